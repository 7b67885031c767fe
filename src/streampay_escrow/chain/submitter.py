"""Attestation Submitter — records "mark complete" on the escrow contract.

Submission sequence (all inside the signing-account lock):
    1. Fetch the backend account's current sequence number.
    2. Build a ``mark_complete(milestone_index, evidence_url)`` invocation.
    3. Simulate/prepare it to compute resource fees.
    4. Sign with the backend key.
    5. Broadcast and return the transaction hash.

One backend key signs every attestation, so its sequence number is a shared
resource: two submissions that load the same sequence would see the second
rejected by the network. The lock serializes steps 1-5. In a single process
it is an ``asyncio.Lock``; across processes it is a Redis lock keyed by the
account (see infrastructure/redis_client.py).

Re-submitting an attestation the contract already applied is rejected in
step 3 and surfaces as SimulationError, distinct from the transient
ChainError, so callers never blindly retry it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from streampay_escrow.domain.chain_protocol import ContractCall
from streampay_escrow.domain.exceptions import ChainError, ChainTimeoutError
from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager
    from typing import Any

    from streampay_escrow.domain.chain_protocol import ChainGateway, TransactionSigner

logger = get_logger(__name__)

MARK_COMPLETE = "mark_complete"


class AttestationSubmitter:
    """Submits milestone attestations through a chain gateway."""

    def __init__(
        self,
        gateway: ChainGateway,
        signer: TransactionSigner,
        lock_factory: Callable[[], AbstractAsyncContextManager[Any]] | None = None,
        timeout_seconds: float = 45.0,
        account_fetch_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
    ) -> None:
        """Initialize the submitter.

        Args:
            gateway: RPC implementation (Stellar or simulated).
            signer: Holder of the backend signing key.
            lock_factory: Returns the context manager guarding the account
                sequence for one submission. Defaults to a process-wide lock.
            timeout_seconds: Budget for the whole load/simulate/broadcast run.
            account_fetch_attempts: Tries for the sequence fetch (read-only,
                safe to repeat).
            retry_wait_seconds: Base of the exponential backoff between tries.
        """
        self._gateway = gateway
        self._signer = signer
        self._process_lock = asyncio.Lock()
        self._lock_factory = lock_factory or (lambda: self._process_lock)
        self._timeout = timeout_seconds
        self._attempts = max(1, account_fetch_attempts)
        self._retry_wait = retry_wait_seconds

    async def submit(self, contract_id: str, milestone_index: int, evidence_url: str) -> str:
        """Attest that a milestone's task is complete.

        Returns:
            The transaction hash of the broadcast attestation.

        Raises:
            ChainError: Network/RPC failure or timeout (transient).
            SigningError: The backend key is missing or invalid.
            SimulationError: The contract rejected the call in pre-flight.
        """
        call = ContractCall(
            contract_id=contract_id,
            function_name=MARK_COMPLETE,
            milestone_index=milestone_index,
            evidence_url=evidence_url,
        )
        log = logger.bind(contract_id=contract_id, milestone_index=milestone_index)

        try:
            async with asyncio.timeout(self._timeout):
                async with self._lock_factory():
                    tx_hash = await self._submit_locked(call)
        except TimeoutError as exc:
            log.warning("chain.submit_timeout", timeout_seconds=self._timeout)
            raise ChainTimeoutError(self._timeout) from exc

        log.info("chain.attestation_submitted", tx_hash=tx_hash)
        return tx_hash

    async def _submit_locked(self, call: ContractCall) -> str:
        public_key = self._signer.public_key
        account = await self._load_account(public_key)

        transaction = self._gateway.build_transaction(account, call)
        prepared = await self._gateway.prepare(transaction)
        self._signer.sign(prepared)

        logger.debug(
            "chain.broadcast",
            contract_id=call.contract_id,
            milestone_index=call.milestone_index,
        )
        return await self._gateway.broadcast(prepared)

    async def _load_account(self, public_key: str) -> Any:
        """Fetch the sequence state, retrying transient RPC failures."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=self._retry_wait, max=4),
            retry=retry_if_exception_type(ChainError),
            reraise=True,
        ):
            with attempt:
                return await self._gateway.load_account(public_key)
        raise ChainError("Account fetch exhausted retries")  # pragma: no cover

    @property
    def signing_account(self) -> str:
        """Public key of the backend account; raises SigningError if unavailable."""
        return self._signer.public_key

    def use_lock(self, lock_factory: Callable[[], AbstractAsyncContextManager[Any]]) -> None:
        """Replace the sequence lock, e.g. with a Redis lock shared across workers."""
        self._lock_factory = lock_factory

    async def close(self) -> None:
        await self._gateway.close()
