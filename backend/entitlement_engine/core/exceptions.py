class EntitlementEngineError(Exception):
    """Base exception for the webhook entitlement engine."""

    pass


class ConfigurationError(EntitlementEngineError):
    """Raised when the deployment is missing required configuration (e.g. the webhook secret)."""

    pass


class VerificationError(EntitlementEngineError):
    """Raised when a webhook body fails signature verification or envelope parsing."""

    pass


class IdentityLookupError(EntitlementEngineError):
    """Raised when the remote identity service cannot return a user profile."""

    def __init__(self, external_user_id: str, reason: str):
        self.external_user_id = external_user_id
        self.reason = reason
        super().__init__(f"Identity lookup failed for '{external_user_id}': {reason}")


class IdentityServiceUnavailable(IdentityLookupError):
    """Transient identity service failure (transport error, 429 or 5xx). Retryable."""

    pass


class LedgerWriteError(EntitlementEngineError):
    """Raised when a ledger write fails."""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Ledger write '{operation}' failed: {reason}")


class WorkerPoolFullError(EntitlementEngineError):
    """Raised when the background worker queue has no room for another job."""

    pass
