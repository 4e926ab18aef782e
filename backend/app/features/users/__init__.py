"""
User management module.

Usage:
    from app.features.users import User, UserRepository
"""

from .models import User, Visibility
from .repository import UserRepository

__all__ = [
    "User",
    "Visibility",
    "UserRepository",
]
