"""
Domain errors raised by the store modules.

Every error carries the HTTP status it is rendered with; ``main`` turns
them into ``{"message": ...}`` JSON bodies.
"""


class StoreError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(StoreError):
    status_code = 400


class InsufficientStock(ValidationFailed):
    pass


class AuthenticationError(StoreError):
    status_code = 401


class PermissionDenied(StoreError):
    status_code = 403


class NotFoundError(StoreError):
    status_code = 404
