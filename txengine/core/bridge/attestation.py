"""
Circle attestation service (Iris) client.
"""

import logging
from typing import Optional, Protocol

from eth_utils import keccak

from ...chains.transport import HttpTransport
from ...config import settings
from ..errors import NetworkError, ParseError


logger = logging.getLogger(__name__)


class AttestationService(Protocol):
    async def get_attestation(self, message: bytes) -> Optional[bytes]:
        """Attestation bytes, or None while the message is not attested yet."""
        ...


def message_hash(message: bytes) -> str:
    return "0x" + keccak(message).hex()


class IrisAttestationClient:
    """Looks up attestations by the keccak-256 hash of the burn message."""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[HttpTransport] = None):
        self._transport = transport or HttpTransport(base_url or settings.attestation_api_url, chain="iris")

    async def get_attestation(self, message: bytes) -> Optional[bytes]:
        digest = message_hash(message)
        status, body = await self._transport.get(f"/v1/attestations/{digest}")

        if status == 404:
            return None
        if status != 200 or not isinstance(body, dict):
            raise NetworkError(f"Attestation lookup for {digest} returned HTTP {status}")

        if body.get("status") != "complete":
            logger.debug(f"Attestation for {digest} is {body.get('status')}")
            return None

        attestation = body.get("attestation") or ""
        if not attestation or attestation.upper() == "PENDING":
            return None
        try:
            return bytes.fromhex(attestation[2:] if attestation.startswith("0x") else attestation)
        except ValueError as e:
            raise ParseError(f"Attestation for {digest} is not hex") from e

    async def close(self) -> None:
        await self._transport.close()
