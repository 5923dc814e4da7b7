from typing import Optional

from fastapi import HTTPException


class AppError(HTTPException):
    """Base for errors the API reports to callers as `{"error": ...}`."""

    status_code = 500

    def __init__(self, message: str, *, field: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or type(self).status_code, detail=message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        return self.message


class ValidationError(AppError):
    status_code = 400


class InsufficientStock(ValidationError):
    """Requested sale quantity exceeds the item's on-hand quantity."""


class NegativeStock(ValidationError):
    """An adjustment would leave the item's on-hand quantity below zero."""


class NotFoundError(AppError):
    status_code = 404


class AuthorizationError(AppError):
    # 401 when the caller is unknown, 403 when the caller lacks the role.
    status_code = 403


class ConflictError(AppError):
    status_code = 409


class StoreError(AppError):
    status_code = 500
