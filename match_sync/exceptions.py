# =========================================================================
# CUSTOM EXCEPTIONS
# =========================================================================

from typing import Any, Optional


class MatchSyncError(Exception):
    """Base exception for match sync errors"""
    pass


class UpstreamUnavailable(MatchSyncError):
    """Remote service unreachable after the retry budget was spent"""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class RateLimitExceeded(UpstreamUnavailable):
    """Still rate limited (429) on the final attempt"""
    pass


class RemoteAPIError(MatchSyncError):
    """Remote service answered with a non-2xx, non-429 status"""

    def __init__(self, status_code: int, message: str, details: Optional[Any] = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.details = details


class RecordStoreError(RemoteAPIError):
    """Record store request failed"""
    pass


class CrmError(MatchSyncError):
    """Base exception for CRM-related errors"""
    pass


class CrmAPIError(RemoteAPIError, CrmError):
    """CRM request failed"""
    pass


class DataValidationError(MatchSyncError):
    """Data validation failed"""
    pass


class ConfigurationError(DataValidationError):
    """Required configuration is missing"""
    pass
