"""Error taxonomy shared by services, routers and workers.

Every service-level failure is a ``ServiceError`` carrying a stable ``code``
(rendered to API clients) and the HTTP status it maps to. Domain errors
subclass one of the generic kinds so callers can catch either level.
"""

from typing import Optional


class ServiceError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class Unauthenticated(ServiceError):
    code = "unauthenticated"
    status_code = 401


class PermissionDenied(ServiceError):
    code = "permission_denied"
    status_code = 403


class InvalidArgument(ServiceError):
    code = "invalid_argument"
    status_code = 400


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404


class AlreadyExists(ServiceError):
    code = "already_exists"
    status_code = 409


class FailedPrecondition(ServiceError):
    code = "failed_precondition"
    status_code = 412


class Internal(ServiceError):
    code = "internal"
    status_code = 500


class IntegrationNotAuthorized(NotFound):
    """No stored credentials: the seller never completed the OAuth flow."""


class RefreshTokenMissing(FailedPrecondition):
    """Stored credentials have no refresh token; re-authorization needed."""


class TokenRefreshFailed(Internal):
    pass


class SellerLookupFailed(Internal):
    pass


class OrderSearchFailed(Internal):
    pass


class OrderNotFound(NotFound):
    pass


class MarketplaceConfigError(Internal):
    pass


class UpstreamApiError(Exception):
    """Non-2xx response or transport failure from an outbound HTTP call.

    ``status_code`` is None when no response was received at all.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MarketplaceApiError(UpstreamApiError):
    pass


class BlingApiError(UpstreamApiError):
    pass
