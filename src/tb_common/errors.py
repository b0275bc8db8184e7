"""Application error types and the snowflake parsing boundary.

Every AppError carries an HTTP status and a client-facing message. The app
factory registers a handler that turns them into {"ok": false, "error": ...}
responses. Anything that is not an AppError falls through to the 500 handler.
"""

import logging

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def client_message(self) -> str:
        return self.message


class NotFound(AppError):
    status_code = 404


class BadRequest(AppError):
    status_code = 400


class AccessDenied(AppError):
    """Authenticated but lacking a grant. The reason is logged, not returned."""

    status_code = 403

    def __init__(self, user_id: int | str, reason: str):
        super().__init__(reason)
        self.user_id = user_id

    @property
    def client_message(self) -> str:
        return "Insufficient permissions"


class UserNotInSession(AppError):
    status_code = 404

    def __init__(self):
        super().__init__("User not found in session")

    @property
    def client_message(self) -> str:
        return "User not found"


class UserNotInDatabase(AppError):
    status_code = 404

    def __init__(self, user_id: int | str):
        super().__init__(f"User {user_id} not found in database")
        self.user_id = user_id

    @property
    def client_message(self) -> str:
        return "User not found"


class AdminCodeValidationFailed(AppError):
    status_code = 403

    def __init__(self):
        super().__init__("Invalid or expired admin code.")


class InternalError(AppError):
    status_code = 500

    @property
    def client_message(self) -> str:
        return "Internal server error"


class InvalidSnowflake(InternalError):
    def __init__(self, value: object, reason: str):
        super().__init__(f"Failed to parse ID from String '{value}': {reason}")
        self.value = value


def parse_snowflake(value: str | int) -> int:
    """Convert a stored Discord ID into an int. Raises InvalidSnowflake on malformed input."""
    if isinstance(value, bool):
        raise InvalidSnowflake(value, "not a string")
    if isinstance(value, int):
        if value < 0:
            raise InvalidSnowflake(value, "negative value")
        return value
    if not isinstance(value, str):
        raise InvalidSnowflake(value, "not a string")
    text = value.strip()
    if not (text.isascii() and text.isdigit()):
        raise InvalidSnowflake(value, "invalid digit found in string")
    parsed = int(text)
    if parsed >= 2**64:
        raise InvalidSnowflake(value, "number too large to fit in target type")
    return parsed
