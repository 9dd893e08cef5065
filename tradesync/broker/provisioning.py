"""
Account Provisioning Client.

Creates a cloud account shadow on the gateway from the investor (read-only)
credential and requests its deployment. Deployment completes asynchronously;
the State Poller observes it on later syncs.
"""
from tradesync.constants import SUPPORTED_PLATFORMS
from tradesync.domain.models import Platform
from tradesync.exceptions import (
    ConfigurationError,
    GatewayPermanentError,
    OperationalError,
    ProvisionError,
    ValidationError,
)
from tradesync.gateway.client import GatewayClient
from tradesync.gateway.payloads import decode_created_account
from tradesync.monitoring.logger import get_logger

logger = get_logger(__name__)

CREDENTIALS_HINT = (
    "Check the account number, the investor (read-only) password and the "
    "exact broker server name as shown in your trading terminal."
)
RETRY_HINT = "The broker gateway did not respond properly. Please try again in a few minutes."


def parse_platform(value: str) -> Platform:
    """Normalize a caller-supplied platform name; raises ValidationError when unsupported."""
    normalized = (value or "").strip().lower()
    if normalized not in SUPPORTED_PLATFORMS:
        raise ValidationError(
            f"Unsupported platform '{value}'. Expected one of: {', '.join(SUPPORTED_PLATFORMS)}"
        )
    return Platform(normalized)


class AccountProvisioner:
    """Provisions remote accounts through the gateway's provisioning API."""

    def __init__(self, client: GatewayClient):
        self.client = client

    async def provision(
        self,
        platform: str,
        account_number: str,
        investor_password: str,
        server: str,
    ) -> str:
        """
        Create (and deploy) a remote account.

        Returns:
            The gateway-issued remote account id

        Raises:
            ValidationError: Unsupported platform or missing field
            ConfigurationError: Gateway token not configured
            ProvisionError: Gateway refused or failed the request
        """
        parsed_platform = parse_platform(platform)
        account_number = (account_number or "").strip()
        server = (server or "").strip()
        if not account_number or not server or not investor_password:
            raise ValidationError("Account number, investor password and server are required")

        if not self.client.is_configured:
            raise ConfigurationError("Broker gateway is not configured (METAAPI_TOKEN missing)")

        logger.info(
            "PROVISION_START",
            platform=parsed_platform.value,
            account_number=account_number,
            server=server,
        )

        try:
            payload = await self.client.create_account(
                platform=parsed_platform.value,
                login=account_number,
                investor_password=investor_password,
                server=server,
                name=f"{parsed_platform.value.upper()}-{account_number}",
            )
        except GatewayPermanentError as e:
            logger.warning("PROVISION_REJECTED", account_number=account_number, status=e.status, error=str(e))
            raise ProvisionError(
                "The broker gateway rejected this account.",
                hint=CREDENTIALS_HINT,
                status=e.status,
            ) from e
        except OperationalError as e:
            logger.warning("PROVISION_FAILED", account_number=account_number, error=str(e))
            raise ProvisionError("Could not reach the broker gateway.", hint=RETRY_HINT) from e

        decoded = decode_created_account(payload)
        if not decoded.ok:
            logger.warning("PROVISION_MALFORMED", account_number=account_number, error=decoded.error)
            raise ProvisionError("The broker gateway returned an unexpected response.", hint=RETRY_HINT)
        account_id = decoded.value

        if self.client.config.deploy_on_provision:
            try:
                await self.client.deploy_account(account_id)
            except (GatewayPermanentError, OperationalError) as e:
                # The poller re-issues deploy on every sync until the account is deployed
                logger.warning("PROVISION_DEPLOY_DEFERRED", account_id=account_id, error=str(e))

        logger.info("PROVISION_OK", account_id=account_id, platform=parsed_platform.value)
        return account_id
