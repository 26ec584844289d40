"""
API Routes Module.

Contains route handlers:
- auth: Sign-in, provider callbacks, session and sign-out (/auth/*)
"""

from .auth import router as auth_router

__all__ = [
    "auth_router",
]
