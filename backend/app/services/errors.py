"""Service-layer exceptions; routers translate them into HTTP errors."""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = 404


class PermissionDeniedError(ServiceError):
    status_code = 403


class ValidationFailedError(ServiceError):
    status_code = 400


class ConflictError(ServiceError):
    status_code = 409
