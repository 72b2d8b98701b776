"""Startup check that this process is the contract's registered oracle."""

from __future__ import annotations

import logging

from .context import OracleContext
from .errors import IdentityError, IdentityMismatchError

LOGGER = logging.getLogger(__name__)

SET_ORACLE_GAS_LIMIT = 2_000_000


class IdentityReconciler:
    """Compare the signer with ``oracle()`` and repair it where allowed.

    Confidential deployments register themselves, directly on a localnet and
    through the attested signer elsewhere. Public deployments cannot, and
    refuse to start.
    """

    def __init__(self, ctx: OracleContext) -> None:
        self._ctx = ctx

    async def reconcile(self) -> None:
        ctx = self._ctx
        chain = ctx.chain
        signer = chain.signer_address
        registered = await chain.oracle_address()
        if str(registered).lower() == signer.lower():
            LOGGER.info("Oracle address %s matches the contract", signer)
            return

        if not ctx.config.is_confidential:
            message = (
                f"On-chain oracle is {registered}, but this oracle signs as {signer}. "
                "The contract owner must call setOracle()."
            )
            await ctx.notifier.notify("Oracle address mismatch", message)
            raise IdentityMismatchError(message)

        LOGGER.info("Registering %s as oracle (was %s)", signer, registered)
        try:
            if ctx.config.is_localnet:
                tx_hash = await chain.set_oracle(signer)
                LOGGER.info("setOracle submitted directly in %s", tx_hash)
            else:
                if ctx.rofl is None:
                    raise IdentityError("No attested signer is configured")
                data = chain.encode_call("setOracle", signer)
                result = await ctx.rofl.submit_tx(
                    to=chain.contract_address, data=data, gas_limit=SET_ORACLE_GAS_LIMIT
                )
                LOGGER.info("setOracle submitted through the attested signer: %s", result)
        except Exception as exc:
            await ctx.notifier.notify(
                "Oracle setup failed",
                f"Could not register {signer} as the contract oracle: {exc}",
            )
            if isinstance(exc, IdentityError):
                raise
            raise IdentityError(f"setOracle failed: {exc}") from exc


__all__ = ["IdentityReconciler", "SET_ORACLE_GAS_LIMIT"]
