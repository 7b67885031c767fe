"""Soroban RPC gateway and backend keypair signer built on stellar-sdk.

The escrow contract exposes ``mark_complete(milestone_index: u32, pr_url: String)``.
Pre-flight simulation (``prepare_transaction``) is where the contract rejects
an attestation it already applied (MilestoneAlreadyCompleted); that failure is
translated to SimulationError. Transport failures and rejected broadcasts are
translated to ChainError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from stellar_sdk import Keypair, SorobanServerAsync, TransactionBuilder, scval
from stellar_sdk.exceptions import PrepareTransactionException, SdkError

from streampay_escrow.domain.exceptions import ChainError, SigningError, SimulationError
from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from stellar_sdk import TransactionEnvelope

    from streampay_escrow.domain.chain_protocol import ContractCall

logger = get_logger(__name__)


class StellarKeypairSigner:
    """Signs with the backend's Stellar secret key.

    The key is parsed lazily so a missing secret surfaces as SigningError on
    the first attestation instead of crashing application startup.
    """

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key
        self._keypair: Keypair | None = None

    def _get_keypair(self) -> Keypair:
        if self._keypair is None:
            if not self._secret_key:
                raise SigningError("BACKEND_SECRET_KEY is not configured")
            try:
                self._keypair = Keypair.from_secret(self._secret_key)
            except ValueError as exc:
                raise SigningError(f"Backend secret key is invalid: {exc}") from exc
        return self._keypair

    @property
    def public_key(self) -> str:
        return self._get_keypair().public_key

    def sign(self, transaction: TransactionEnvelope) -> None:
        transaction.sign(self._get_keypair())


class StellarGateway:
    """ChainGateway over a Soroban RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        network_passphrase: str,
        base_fee: int = 100,
        tx_timeout_seconds: int = 30,
    ) -> None:
        self._server = SorobanServerAsync(rpc_url)
        self._passphrase = network_passphrase
        self._base_fee = base_fee
        self._tx_timeout = tx_timeout_seconds

    async def load_account(self, public_key: str) -> Any:
        try:
            return await self._server.load_account(public_key)
        except SdkError as exc:
            raise ChainError(f"Failed to load account {public_key}: {exc}") from exc

    def build_transaction(self, account: Any, call: ContractCall) -> TransactionEnvelope:
        return (
            TransactionBuilder(
                source_account=account,
                network_passphrase=self._passphrase,
                base_fee=self._base_fee,
            )
            .append_invoke_contract_function_op(
                contract_id=call.contract_id,
                function_name=call.function_name,
                parameters=[
                    scval.to_uint32(call.milestone_index),
                    scval.to_string(call.evidence_url),
                ],
            )
            .set_timeout(self._tx_timeout)
            .build()
        )

    async def prepare(self, transaction: TransactionEnvelope) -> TransactionEnvelope:
        try:
            return await self._server.prepare_transaction(transaction)
        except PrepareTransactionException as exc:
            simulation = exc.simulate_transaction_response
            contract_error = getattr(simulation, "error", None)
            logger.warning("chain.simulation_rejected", contract_error=contract_error)
            raise SimulationError(
                f"Contract rejected the call in simulation: {contract_error or exc}",
                contract_error=contract_error,
            ) from exc
        except SdkError as exc:
            raise ChainError(f"Simulation request failed: {exc}") from exc

    async def broadcast(self, transaction: TransactionEnvelope) -> str:
        try:
            response = await self._server.send_transaction(transaction)
        except SdkError as exc:
            raise ChainError(f"Broadcast failed: {exc}") from exc

        status = str(getattr(response.status, "value", response.status))
        if status in ("ERROR", "TRY_AGAIN_LATER"):
            logger.warning(
                "chain.broadcast_rejected",
                status=status,
                error_result_xdr=response.error_result_xdr,
            )
            raise ChainError(f"Transaction {response.hash} rejected with status {status}")
        return response.hash

    async def close(self) -> None:
        await self._server.close()
