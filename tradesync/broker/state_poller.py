"""
State Poller.

Re-derives remote account readiness from the gateway on every sync. There is
no persisted state: the outcome is a pure function of the reported lifecycle
and connectivity, plus an idempotent re-deploy when the account is not
deployed.
"""
from tradesync.domain.models import AccountState, PollResult, ReadinessOutcome
from tradesync.exceptions import MalformedPayloadError
from tradesync.gateway.client import GatewayClient
from tradesync.gateway.payloads import (
    CONNECTIVITY_CONNECTED,
    LIFECYCLE_DEPLOYED,
    decode_account_state,
)
from tradesync.monitoring.logger import get_logger

logger = get_logger(__name__)


def evaluate_readiness(lifecycle: str, connectivity: str) -> ReadinessOutcome:
    """
    Map gateway (lifecycle, connectivity) onto a readiness outcome.

    Not deployed -> DEPLOYING; deployed but not connected -> CONNECTING;
    otherwise READY.
    """
    if (lifecycle or "").upper() != LIFECYCLE_DEPLOYED:
        return ReadinessOutcome.DEPLOYING
    if (connectivity or "").upper() != CONNECTIVITY_CONNECTED:
        return ReadinessOutcome.CONNECTING
    return ReadinessOutcome.READY


class StatePoller:
    """Queries the account-state endpoint and decides whether sync may proceed."""

    def __init__(self, client: GatewayClient):
        self.client = client

    async def poll(self, account_id: str) -> PollResult:
        """
        Poll the account once.

        Raises:
            OperationalError: Transport failure or malformed state payload
            GatewayPermanentError: Gateway refused the query
        """
        payload = await self.client.get_account_state(account_id)
        decoded = decode_account_state(payload)
        if not decoded.ok:
            raise MalformedPayloadError(f"Account state: {decoded.error}")

        state: AccountState = decoded.value
        outcome = evaluate_readiness(state.lifecycle, state.connectivity)

        logger.info(
            "STATE_POLL",
            account_id=account_id,
            lifecycle=state.lifecycle,
            connectivity=state.connectivity,
            region=state.region,
            outcome=outcome.value,
        )

        if outcome == ReadinessOutcome.DEPLOYING:
            await self.client.deploy_account(account_id)
            logger.info("STATE_POLL_REDEPLOY_REQUESTED", account_id=account_id)

        return PollResult(outcome=outcome, state=state)
