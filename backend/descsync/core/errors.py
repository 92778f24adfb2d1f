"""Error taxonomy shared by services, workers and the API layer"""
from typing import Any, Dict, Optional


class DescSyncError(Exception):
    """Base class for every domain error

    ``retryable`` tells background workers whether a later attempt may succeed.
    ``http_status`` is what the API layer answers with.
    """
    code = "error"
    http_status = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotConnected(DescSyncError):
    """Channel has no stored credentials"""
    code = "not_connected"
    http_status = 401


class ScopeInsufficient(DescSyncError):
    """Granted OAuth scopes do not cover the requested operation"""
    code = "scope_insufficient"
    http_status = 403


class TokenRefreshFailed(DescSyncError):
    """Refresh exchange failed; the user must reconnect the channel"""
    code = "token_refresh_failed"
    http_status = 401


class RevokedOrExpiredRefresh(TokenRefreshFailed):
    code = "reconnect_required"


class RemoteNotFound(DescSyncError):
    code = "remote_not_found"
    http_status = 404


class RemoteTransient(DescSyncError):
    """Rate limited or remote outage; safe to retry later with backoff"""
    code = "remote_transient"
    http_status = 503
    retryable = True


class PartialRetry(RemoteTransient):
    """Part of a batch hit transient errors; ``retry_payload`` covers only that part"""

    def __init__(self, message: str, retry_payload: Dict[str, Any], details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.retry_payload = retry_payload


class RemoteError(DescSyncError):
    """Any other remote failure, message kept verbatim"""
    code = "remote_error"
    http_status = 502

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.status_code = status_code


class LimitReached(DescSyncError):
    code = "limit_reached"
    http_status = 403

    def __init__(self, message: str, limit: Optional[int], tier: str):
        super().__init__(message, {"limit": limit, "tier": tier})
        self.limit = limit
        self.tier = tier


class AlreadySyncing(DescSyncError):
    code = "already_syncing"
    http_status = 409


class ValidationError(DescSyncError):
    code = "validation_error"
    http_status = 422


class ResourceNotFound(DescSyncError):
    """Missing object, or an object owned by another user"""
    code = "not_found"
    http_status = 404
