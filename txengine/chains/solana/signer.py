"""
Solana transaction signing with ``solders``.

Solana has no account sequence: replay protection comes from the recent
blockhash, fetched right before signing. The fee becomes compute-budget
instructions (unit limit from ``gas_limit``, unit price from ``gas_price``
expressed in lamports per compute unit).
"""

from decimal import ROUND_CEILING, Decimal
from typing import Any, Awaitable, Callable, List, Optional

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ...config import ChainConfig
from ...core.errors import ParseError, SigningError
from ...core.execution.models import (
    AccountState,
    Fee,
    SignedTransaction,
    UnsignedTransaction,
    payload_digest,
)

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
MICRO_LAMPORTS_PER_LAMPORT = 1_000_000

BlockhashSource = Callable[[], Awaitable[str]]


def load_keypair(secret: str) -> Keypair:
    """Keypair from a base58 secret (as exported by wallets) or a 32/64-byte hex key."""
    secret = secret.strip()
    try:
        raw = bytes.fromhex(secret[2:] if secret.startswith("0x") else secret)
    except ValueError:
        return Keypair.from_base58_string(secret)
    if len(raw) == 64:
        return Keypair.from_bytes(raw)
    if len(raw) == 32:
        return Keypair.from_seed(raw)
    raise ValueError(f"Invalid Solana key length: {len(raw)}")


def memo_instruction(memo: str, signer: Pubkey) -> Instruction:
    return Instruction(MEMO_PROGRAM_ID, memo.encode("utf-8"), [AccountMeta(signer, True, True)])


def instruction_digest(instructions: List[Instruction]) -> str:
    parts = []
    for ix in instructions:
        parts.append(bytes(ix.program_id))
        parts.append(bytes(ix.data))
        parts.extend(bytes(meta.pubkey) for meta in ix.accounts)
    return payload_digest(*parts)


def unit_price_micro_lamports(gas_price: float) -> int:
    price = Decimal(str(gas_price)) * MICRO_LAMPORTS_PER_LAMPORT
    return int(price.to_integral_value(rounding=ROUND_CEILING))


class SolanaSigner:
    """Signs legacy Solana transactions for one keypair."""

    def __init__(self, config: ChainConfig, blockhash_source: BlockhashSource, secret: Optional[str] = None):
        self._config = config
        self._blockhash_source = blockhash_source
        try:
            self._keypair = load_keypair(secret or config.private_key.get_secret_value())
        except ValueError as e:
            raise SigningError(f"Invalid Solana keypair for {config.name}", chain=config.name) from e

        if config.signer_address and config.signer_address != str(self._keypair.pubkey()):
            raise SigningError(
                f"Configured signer address {config.signer_address} does not match the keypair",
                chain=config.name,
            )

    @property
    def address(self) -> str:
        return str(self._keypair.pubkey())

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    def build(self, messages: List[Any], memo: str = "") -> UnsignedTransaction:
        for ix in messages:
            if not isinstance(ix, Instruction):
                raise ParseError(f"Solana messages must be Instructions, got {type(ix).__name__}")
        instructions = list(messages)
        if memo:
            instructions.append(memo_instruction(memo, self.pubkey))

        return UnsignedTransaction(
            chain=self._config.name,
            signer_address=self.address,
            messages=instructions,
            memo=memo,
            payload_digest=instruction_digest(instructions),
        )

    async def sign(
        self,
        unsigned: UnsignedTransaction,
        fee: Fee,
        account: AccountState,
        sequence: Optional[int],
    ) -> SignedTransaction:
        budget = [set_compute_unit_limit(fee.gas_limit)]
        if fee.gas_price > 0:
            budget.append(set_compute_unit_price(unit_price_micro_lamports(fee.gas_price)))

        blockhash = Hash.from_string(await self._blockhash_source())
        message = Message.new_with_blockhash(budget + unsigned.messages, self.pubkey, blockhash)
        tx = Transaction([self._keypair], message, blockhash)

        return SignedTransaction(
            raw=bytes(tx),
            tx_hash=str(tx.signatures[0]),
            fee=fee,
            sequence=None,
            payload_digest=unsigned.payload_digest,
        )
