"""Bearer-token authentication for the admin surface."""

from cachelayer.auth.dependencies import AuthenticatedUser, get_current_user, require_role
from cachelayer.auth.tokens import TokenValidationError, create_dev_token, validate_token

__all__ = [
    "AuthenticatedUser",
    "get_current_user",
    "require_role",
    "TokenValidationError",
    "create_dev_token",
    "validate_token",
]
