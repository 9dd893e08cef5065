"""
System-wide constants for the broker synchronization service.

Centralizes gateway endpoints and default windows used across modules.
"""

# Gateway (MetaApi cloud) endpoints
PROVISIONING_BASE_URL = "https://mt-provisioning-api-v1.agiliumtrade.agiliumtrade.ai"
CLIENT_BASE_URL_TEMPLATE = "https://mt-client-api-v1.{region}.agiliumtrade.ai"
DEFAULT_REGION = "new-york"

# API Endpoints
ACCOUNTS_ENDPOINT = "/users/current/accounts"
ACCOUNT_ENDPOINT = "/users/current/accounts/{account_id}"
DEPLOY_ENDPOINT = "/users/current/accounts/{account_id}/deploy"
ACCOUNT_INFORMATION_ENDPOINT = "/users/current/accounts/{account_id}/account-information"
POSITIONS_ENDPOINT = "/users/current/accounts/{account_id}/positions"
HISTORY_DEALS_ENDPOINT = "/users/current/accounts/{account_id}/history-deals/time/{start}/{end}"

# Timeouts
DEFAULT_API_TIMEOUT = 30  # seconds

# Synchronization
DEALS_WINDOW_DAYS = 30
EQUITY_HISTORY_DEFAULT_DAYS = 30
TRADES_PAGE_DEFAULT_LIMIT = 50

# Manual trade entry (simplified pip model)
PIP_MULTIPLIER = 10000
PIP_VALUE = 10

# External id prefixes
POSITION_EXTERNAL_ID_PREFIX = "pos"
DEAL_EXTERNAL_ID_PREFIX = "deal"

SUPPORTED_PLATFORMS = ("mt4", "mt5")
