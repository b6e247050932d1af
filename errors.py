"""Exception types shared by the configuration loader and the HTTP layer."""

from __future__ import annotations


class ShelfError(Exception):
    """Base error. Unexpected failures map to a 500 without leaking details."""

    status_code = 500
    code = "internal_error"
    expose_message = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        payload = {"code": self.code}
        if self.expose_message and self.message:
            payload["message"] = self.message
        return payload


class ConfigError(ShelfError):
    """Configuration or endpoint spec files could not be loaded."""


class InputError(ShelfError):
    status_code = 400
    code = "bad_request"
    expose_message = True


class AuthError(ShelfError):
    status_code = 401
    code = "unauthorized"
    expose_message = True


class ForbiddenError(ShelfError):
    status_code = 403
    code = "forbidden"
    expose_message = True


class NotFoundError(ShelfError):
    status_code = 404
    code = "not_found"
    expose_message = True
