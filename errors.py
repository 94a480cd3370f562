"""
Error taxonomy

Every error the services raise carries the HTTP status it maps to and a
short human-readable message. The app turns them into ``{"message": ...}``
responses.
"""

from typing import Optional


class ShopError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRequest(ShopError):
    status_code = 400
    default_message = "Invalid request"


class Conflict(ShopError):
    status_code = 400
    default_message = "Already exists"


class Unauthorized(ShopError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidCredentials(Unauthorized):
    # Login failures are reported as a bad request, not as 401
    status_code = 400
    default_message = "Invalid credentials"


class NotFound(ShopError):
    status_code = 404
    default_message = "Not found"
