"""Simulated chain — an in-process stand-in for the Soroban escrow contract.

Used in development (``CHAIN_SIMULATE=true``), the simulation script and the
test suite. It behaves like the real contract where the coordinator cares:

    - Sequence numbers advance on every broadcast; a transaction built from a
      stale sequence is rejected (tx_bad_seq), exactly what happens when two
      submissions race without the signing-account lock.
    - ``mark_complete`` on an already-completed milestone is rejected during
      simulation (MilestoneAlreadyCompleted).
    - Unsigned transactions are rejected at broadcast.

Failures can be injected with ``fail_next`` to exercise retry paths.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from streampay_escrow.domain.exceptions import ChainError, SigningError, SimulationError
from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from streampay_escrow.domain.chain_protocol import ContractCall

logger = get_logger(__name__)

SIMULATED_PUBLIC_KEY = "G" + "B" * 55


@dataclass
class SimulatedAccount:
    account_id: str
    sequence: int


@dataclass
class SimulatedTransaction:
    source: str
    sequence: int
    call: ContractCall
    prepared: bool = False
    signatures: list[str] = field(default_factory=list)

    def digest(self) -> str:
        body = (
            f"{self.source}:{self.sequence}:{self.call.contract_id}:"
            f"{self.call.function_name}:{self.call.milestone_index}:{self.call.evidence_url}"
        )
        return hashlib.sha256(body.encode()).hexdigest()


class SimulatedSigner:
    """Signer with a fixed public key; ``available=False`` mimics a missing key."""

    def __init__(self, public_key: str = SIMULATED_PUBLIC_KEY, available: bool = True) -> None:
        self._public_key = public_key
        self.available = available

    @property
    def public_key(self) -> str:
        if not self.available:
            raise SigningError("Simulated signing key unavailable")
        return self._public_key

    def sign(self, transaction: SimulatedTransaction) -> None:
        transaction.signatures.append(self.public_key)


class SimulatedGateway:
    """ChainGateway implementation backed by in-memory contract state."""

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._latency = latency_seconds
        self._sequences: dict[str, int] = {}
        self.completed: dict[tuple[str, int], str] = {}
        self.broadcasts: list[SimulatedTransaction] = []
        self.fail_next: dict[str, int] = {}

    async def _tick(self, step: str) -> None:
        await asyncio.sleep(self._latency)
        remaining = self.fail_next.get(step, 0)
        if remaining:
            self.fail_next[step] = remaining - 1
            raise ChainError(f"Simulated {step} failure")

    async def load_account(self, public_key: str) -> SimulatedAccount:
        await self._tick("load_account")
        return SimulatedAccount(account_id=public_key, sequence=self._sequences.get(public_key, 0))

    def build_transaction(
        self, account: SimulatedAccount, call: ContractCall
    ) -> SimulatedTransaction:
        return SimulatedTransaction(
            source=account.account_id,
            sequence=account.sequence + 1,
            call=call,
        )

    async def prepare(self, transaction: SimulatedTransaction) -> SimulatedTransaction:
        await self._tick("prepare")
        key = (transaction.call.contract_id, transaction.call.milestone_index)
        if key in self.completed:
            raise SimulationError(
                f"Milestone {key[1]} already completed on {key[0]}",
                contract_error="MilestoneAlreadyCompleted",
            )
        transaction.prepared = True
        return transaction

    async def broadcast(self, transaction: SimulatedTransaction) -> str:
        await self._tick("broadcast")
        if not transaction.signatures:
            raise ChainError("tx_bad_auth: transaction is not signed")
        current = self._sequences.get(transaction.source, 0)
        if transaction.sequence != current + 1:
            raise ChainError(
                f"tx_bad_seq: expected {current + 1}, got {transaction.sequence}"
            )
        self._sequences[transaction.source] = transaction.sequence

        tx_hash = transaction.digest()
        key = (transaction.call.contract_id, transaction.call.milestone_index)
        self.completed[key] = transaction.call.evidence_url
        self.broadcasts.append(transaction)
        logger.info(
            "chain.simulated_broadcast",
            tx_hash=tx_hash,
            contract_id=key[0],
            milestone_index=key[1],
        )
        return tx_hash

    async def close(self) -> None:
        return None
