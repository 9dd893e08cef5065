"""
Account provisioning: validation, deploy request and error mapping.
"""
import pytest

from tradesync.broker.provisioning import AccountProvisioner, parse_platform
from tradesync.domain.models import Platform
from tradesync.exceptions import (
    ConfigurationError,
    GatewayPermanentError,
    GatewayTimeoutError,
    ProvisionError,
    ValidationError,
)


def test_parse_platform():
    assert parse_platform("MT5") == Platform.MT5
    assert parse_platform(" mt4 ") == Platform.MT4
    with pytest.raises(ValidationError):
        parse_platform("ctrader")


@pytest.mark.asyncio
async def test_provision_creates_and_deploys(make_gateway):
    client = make_gateway(created={"id": "remote-42"})
    account_id = await AccountProvisioner(client).provision("mt5", "123456", "investor-pw", "Broker-Demo")

    assert account_id == "remote-42"
    kwargs = client.create_account.await_args.kwargs
    assert kwargs["platform"] == "mt5"
    assert kwargs["login"] == "123456"
    assert kwargs["investor_password"] == "investor-pw"
    assert kwargs["server"] == "Broker-Demo"
    client.deploy_account.assert_awaited_once_with("remote-42")


@pytest.mark.asyncio
async def test_provision_rejects_bad_platform_before_gateway(make_gateway):
    client = make_gateway()
    with pytest.raises(ValidationError):
        await AccountProvisioner(client).provision("mt6", "1", "pw", "srv")
    client.create_account.assert_not_called()


@pytest.mark.asyncio
async def test_provision_requires_fields(make_gateway):
    client = make_gateway()
    with pytest.raises(ValidationError):
        await AccountProvisioner(client).provision("mt4", "", "pw", "srv")
    client.create_account.assert_not_called()


@pytest.mark.asyncio
async def test_provision_without_token(make_gateway):
    client = make_gateway(configured=False)
    with pytest.raises(ConfigurationError):
        await AccountProvisioner(client).provision("mt4", "1", "pw", "srv")
    client.create_account.assert_not_called()


@pytest.mark.asyncio
async def test_gateway_rejection_becomes_provision_error_with_hint(make_gateway):
    client = make_gateway()
    client.create_account.side_effect = GatewayPermanentError("E_AUTH: invalid password", status=400)
    with pytest.raises(ProvisionError) as exc_info:
        await AccountProvisioner(client).provision("mt4", "1", "pw", "srv")
    assert exc_info.value.hint
    # Raw gateway text is not the user-facing message
    assert "E_AUTH" not in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_failure_becomes_provision_error(make_gateway):
    client = make_gateway()
    client.create_account.side_effect = GatewayTimeoutError("timed out")
    with pytest.raises(ProvisionError):
        await AccountProvisioner(client).provision("mt4", "1", "pw", "srv")


@pytest.mark.asyncio
async def test_malformed_creation_response(make_gateway):
    client = make_gateway(created={"state": "DRAFT"})
    with pytest.raises(ProvisionError):
        await AccountProvisioner(client).provision("mt4", "1", "pw", "srv")


@pytest.mark.asyncio
async def test_deploy_failure_does_not_fail_provisioning(make_gateway):
    client = make_gateway(created={"id": "remote-1"})
    client.deploy_account.side_effect = GatewayTimeoutError("slow")
    assert await AccountProvisioner(client).provision("mt4", "1", "pw", "srv") == "remote-1"
