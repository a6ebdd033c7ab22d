"""
Error taxonomy for GHL field lookups.
Raised by the resolver and fetcher, converted to response payloads by the lookup service.
"""

from typing import Optional


class GHLLookupError(Exception):
    """Base class; carries the upstream status and raw body when there is one"""

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details


class CredentialMissingError(GHLLookupError):
    pass


class FieldKeyInvalidError(GHLLookupError):
    pass


class ScopeUndeterminableError(GHLLookupError):
    pass


class UpstreamAuthError(GHLLookupError):
    pass


class UpstreamPermissionError(GHLLookupError):
    pass


class UpstreamNotFoundError(GHLLookupError):
    pass


class UpstreamShapeMismatchError(GHLLookupError):
    pass


class UpstreamError(GHLLookupError):
    pass


def error_for_status(status: int, reason: str, scope_label: str, body: str = "") -> GHLLookupError:
    """Translate a non-2xx upstream status into the matching lookup error"""
    if status == 401:
        return UpstreamAuthError(
            "GHL API Authentication error: Invalid API key or token expired", status, body
        )
    if status == 403:
        return UpstreamPermissionError(
            f"GHL API Permission error: Token does not have access to {scope_label}", status, body
        )
    if status == 404:
        return UpstreamNotFoundError(f"GHL API error: {scope_label} not found", status, body)
    return UpstreamError(f"GHL API error: {reason} ({status})", status, body)
