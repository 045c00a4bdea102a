"""Error taxonomy surfaced by the interpretation gateway.

Only RateLimitExceeded and InvalidRequest reach callers. ProviderUnavailable
is absorbed by the gateway, which substitutes canned fallback text.
"""

from typing import Optional

from silkspark.ai.constants import (
    ERROR_INVALID_REQUEST,
    ERROR_NO_API_KEY,
    ERROR_RATE_LIMIT_EXCEEDED,
    RATE_LIMIT_MESSAGE,
)


class AIServiceError(Exception):
    code = "AI_SERVICE_ERROR"


class RateLimitExceeded(AIServiceError):
    """Daily quota exhausted; no automatic retry within the same day."""

    code = ERROR_RATE_LIMIT_EXCEEDED

    def __init__(self, message: str = RATE_LIMIT_MESSAGE, retry_after: int = 0, user_id: Optional[str] = None):
        self.message = message
        self.retry_after = retry_after
        self.user_id = user_id
        super().__init__(self.message)


class ProviderUnavailable(AIServiceError):
    code = "PROVIDER_UNAVAILABLE"


class InvalidRequest(AIServiceError):
    code = ERROR_INVALID_REQUEST


class BackendError(Exception):
    """A single backend call failed in a way another backend might not."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class BackendRateLimited(BackendError):
    def __init__(self, message: str = "Backend quota exhausted"):
        super().__init__(message, code=ERROR_RATE_LIMIT_EXCEEDED)


class MissingAPIKey(BackendError):
    def __init__(self, message: str = "No API key configured"):
        super().__init__(message, code=ERROR_NO_API_KEY)
