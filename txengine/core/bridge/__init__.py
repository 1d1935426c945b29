"""
Cross-domain (burn-and-mint) transfers.
"""

from .models import (
    BurnMessage,
    CrossDomainTransfer,
    TransferStatus,
)

from .attestation import (
    AttestationService,
    IrisAttestationClient,
)

from .coordinator import (
    BurnSource,
    MintDestination,
    CrossDomainTransferCoordinator,
)

__all__ = [
    "BurnMessage",
    "CrossDomainTransfer",
    "TransferStatus",
    "AttestationService",
    "IrisAttestationClient",
    "BurnSource",
    "MintDestination",
    "CrossDomainTransferCoordinator",
]
