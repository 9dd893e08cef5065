"""
Custom exception hierarchy for the broker synchronization service.

Hierarchy:

    TradeSyncError (base)
    ├── ConfigurationError     : gateway credential missing, needs operator action
    ├── ValidationError        : malformed caller input, never reaches the gateway
    ├── OperationalError       : transient/retryable (timeouts, non-JSON, 5xx)
    │   ├── GatewayTimeoutError
    │   ├── MalformedPayloadError
    │   └── GatewayUnavailableError
    ├── GatewayPermanentError  : bad credentials/server, disabled account
    │   └── ProvisionError
    └── PersistenceError       : a reconciliation group could not be committed

Rules:
    - OperationalError: report "try again shortly", caller re-invokes sync.
    - GatewayPermanentError: report remediation text, do not retry.
    - Row-level write failures are logged and skipped inside the group.
    - PersistenceError: the whole group rolled back; report "try again shortly".
"""


class TradeSyncError(Exception):
    """Base exception for all broker synchronization errors."""
    pass


class ConfigurationError(TradeSyncError):
    """Required configuration (e.g. gateway token) is missing."""
    pass


class ValidationError(TradeSyncError):
    """Raised when caller input fails validation."""
    pass


# ============ OPERATIONAL (transient, retryable) ============

class OperationalError(TradeSyncError):
    """Transient/retryable gateway error.

    Treatment: degrade the sync to a "try again shortly" outcome.
    """
    pass


class GatewayTimeoutError(OperationalError):
    """Gateway call exceeded its timeout."""
    pass


class MalformedPayloadError(OperationalError):
    """Gateway returned a body that is not JSON or has the wrong shape."""
    pass


class GatewayUnavailableError(OperationalError):
    """Gateway returned a 5xx or the connection failed."""
    pass


# ============ PERMANENT (needs user action) ============

class GatewayPermanentError(TradeSyncError):
    """Gateway rejected the request for a reason retrying will not fix."""

    def __init__(self, message: str, hint: str = "", status: int | None = None):
        super().__init__(message)
        self.hint = hint
        self.status = status


class ProvisionError(GatewayPermanentError):
    """Remote account could not be created or deployed.

    The message is user-facing; ``hint`` carries remediation text.
    """
    pass


# ============ PERSISTENCE ============

class PersistenceError(TradeSyncError):
    """A reconciliation group failed to commit and was rolled back."""
    pass
