"""Chain integration — attestation submitter and gateway implementations.

Two gateways:
    - StellarGateway:   Soroban RPC via stellar-sdk (production)
    - SimulatedGateway: in-process contract double (development, tests)

``build_submitter`` wires the one selected by ``CHAIN_SIMULATE``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from streampay_escrow.chain.simulated import SimulatedGateway, SimulatedSigner
from streampay_escrow.chain.submitter import AttestationSubmitter
from streampay_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from contextlib import AbstractAsyncContextManager
    from typing import Any

    from streampay_escrow.config import Settings

logger = get_logger(__name__)


def build_submitter(
    settings: Settings,
    lock_factory: Callable[[], AbstractAsyncContextManager[Any]] | None = None,
) -> AttestationSubmitter:
    """Create the submitter described by the settings."""
    if settings.chain_simulate:
        gateway = SimulatedGateway()
        signer = SimulatedSigner()
        logger.info("chain.gateway_selected", gateway="simulated")
    else:
        from streampay_escrow.chain.stellar import StellarGateway, StellarKeypairSigner

        gateway = StellarGateway(
            rpc_url=settings.stellar_rpc_url,
            network_passphrase=settings.network_passphrase,
            base_fee=settings.chain_base_fee,
            tx_timeout_seconds=settings.chain_tx_timeout_seconds,
        )
        signer = StellarKeypairSigner(settings.backend_secret_key)
        logger.info(
            "chain.gateway_selected",
            gateway="stellar",
            rpc_url=settings.stellar_rpc_url,
            network=settings.stellar_network,
        )

    return AttestationSubmitter(
        gateway=gateway,
        signer=signer,
        lock_factory=lock_factory,
        timeout_seconds=settings.chain_submit_timeout_seconds,
        account_fetch_attempts=settings.chain_account_fetch_attempts,
    )


__all__ = [
    "AttestationSubmitter",
    "SimulatedGateway",
    "SimulatedSigner",
    "build_submitter",
]
