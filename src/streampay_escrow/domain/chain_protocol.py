"""Chain Gateway Protocol.

Defines the narrow RPC surface the Attestation Submitter needs from the
blockchain: fetch the signing account's sequence state, build a contract
invocation, simulate/prepare it, and broadcast it. Signing is a separate
capability so the key never lives inside the RPC client.

The domain layer has ZERO imports from stellar-sdk or any network client.
Transactions and accounts are opaque objects passed back to the gateway.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ContractCall:
    """A contract entry point invocation.

    Attributes:
        contract_id: On-chain identifier of the escrow contract.
        function_name: Entry point, e.g. "mark_complete".
        milestone_index: Zero-based milestone ordinal (u32 on-chain).
        evidence_url: Task URL recorded on-chain as completion evidence.
    """

    contract_id: str
    function_name: str
    milestone_index: int
    evidence_url: str


@runtime_checkable
class TransactionSigner(Protocol):
    """Holds the backend key that submits every attestation."""

    @property
    def public_key(self) -> str: ...

    def sign(self, transaction: Any) -> None:
        """Sign the transaction in place. Raises SigningError if the key is unusable."""
        ...


@runtime_checkable
class ChainGateway(Protocol):
    """Protocol that chain RPC implementations must satisfy.

    Concrete implementations:
        - chain/stellar.py    (Soroban RPC via stellar-sdk)
        - chain/simulated.py  (in-process contract double)
    """

    async def load_account(self, public_key: str) -> Any:
        """Fetch the account with its current sequence number. Raises ChainError."""
        ...

    def build_transaction(self, account: Any, call: ContractCall) -> Any:
        """Build an unsigned invocation of ``call`` sourced from ``account``."""
        ...

    async def prepare(self, transaction: Any) -> Any:
        """Simulate and attach resource fees.

        Raises SimulationError if the contract rejects the call, ChainError
        on transport failure.
        """
        ...

    async def broadcast(self, transaction: Any) -> str:
        """Submit a signed transaction and return its hash. Raises ChainError."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...
