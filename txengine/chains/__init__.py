"""
Chain backends and signers.

Each family package (``cosmos``, ``evm``, ``solana``) provides a backend
implementing the capability protocols in ``base`` plus a signer; use
``txengine.chains.client.build_chain_client`` to get a wired client.
"""
