"""
Readiness derivation and the re-deploy side effect.
"""
import pytest

from tradesync.broker.state_poller import StatePoller, evaluate_readiness
from tradesync.domain.models import ReadinessOutcome
from tradesync.exceptions import MalformedPayloadError


@pytest.mark.parametrize(
    "lifecycle, connectivity, expected",
    [
        ("CREATED", "DISCONNECTED", ReadinessOutcome.DEPLOYING),
        ("DEPLOYING", "DISCONNECTED", ReadinessOutcome.DEPLOYING),
        ("UNDEPLOYED", "CONNECTED", ReadinessOutcome.DEPLOYING),
        ("DEPLOYED", "DISCONNECTED", ReadinessOutcome.CONNECTING),
        ("DEPLOYED", "DISCONNECTED_FROM_BROKER", ReadinessOutcome.CONNECTING),
        ("DEPLOYED", "CONNECTED", ReadinessOutcome.READY),
        ("deployed", "connected", ReadinessOutcome.READY),
        ("", "", ReadinessOutcome.DEPLOYING),
    ],
)
def test_evaluate_readiness(lifecycle, connectivity, expected):
    assert evaluate_readiness(lifecycle, connectivity) == expected


@pytest.mark.asyncio
async def test_poll_ready_does_not_redeploy(make_gateway, payloads):
    client = make_gateway(state=payloads.account_state())
    result = await StatePoller(client).poll("acc-1")
    assert result.ready
    assert result.state.region == "london"
    client.deploy_account.assert_not_called()


@pytest.mark.asyncio
async def test_poll_not_deployed_requests_deploy(make_gateway, payloads):
    client = make_gateway(state=payloads.account_state(lifecycle="UNDEPLOYED", connectivity="DISCONNECTED"))
    result = await StatePoller(client).poll("acc-1")
    assert result.outcome == ReadinessOutcome.DEPLOYING
    client.deploy_account.assert_awaited_once_with("acc-1")


@pytest.mark.asyncio
async def test_poll_connecting(make_gateway, payloads):
    client = make_gateway(state=payloads.account_state(connectivity="DISCONNECTED"))
    result = await StatePoller(client).poll("acc-1")
    assert result.outcome == ReadinessOutcome.CONNECTING
    client.deploy_account.assert_not_called()


@pytest.mark.asyncio
async def test_poll_malformed_state(make_gateway):
    client = make_gateway(state="<html>502</html>")
    with pytest.raises(MalformedPayloadError):
        await StatePoller(client).poll("acc-1")
