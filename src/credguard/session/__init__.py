"""
CredGuard Session Module

Token-keyed authentication sessions with idle expiry.
"""

from credguard.session.manager import SessionManager

__all__ = [
    "SessionManager",
]
