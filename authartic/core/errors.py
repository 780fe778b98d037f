from __future__ import annotations


class ServiceError(Exception):
    """Base for errors a service raises on purpose. Routers map status_code to HTTP."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ServiceError):
    status_code = 400


class NotFound(ServiceError):
    status_code = 404


class Unauthorized(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class Conflict(ServiceError):
    status_code = 409


class CapacityExceeded(Conflict):
    def __init__(self, message: str, *, remaining: int):
        super().__init__(message)
        self.remaining = remaining


class DependencyFailure(ServiceError):
    status_code = 502


class InternalError(ServiceError):
    status_code = 500
