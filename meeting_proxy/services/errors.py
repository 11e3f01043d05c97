from __future__ import annotations

from fastapi import HTTPException, status


class ProxyError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(ProxyError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"


class AuthorizationError(ProxyError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFoundError(ProxyError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidRequestError(ProxyError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_request"


class ConflictError(ProxyError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class UpstreamError(ProxyError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upstream_error"

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class UpstreamTimeoutError(ProxyError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    code = "timeout"


class ConfigurationError(ProxyError):
    code = "configuration_error"


class SignatureError(ProxyError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_signature"


class StorageError(ProxyError):
    code = "storage_error"


def to_http_exception(exc: ProxyError) -> HTTPException:
    headers: dict[str, str] | None = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.message, "code": exc.code},
        headers=headers,
    )
