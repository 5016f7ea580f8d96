"""
API Middleware

Authentication for the FastAPI application.
"""

from .auth import (
    get_current_user,
    require_admin,
    verify_firebase_token,
)

__all__ = [
    "get_current_user",
    "require_admin",
    "verify_firebase_token",
]
