"""SQLAlchemy models for the contest platform."""

from .user import Role, User
from .work import InvalidTransition, Nomination, Work, WorkStatus, WorkType
from .rating import Rating
from .password_reset import PasswordReset
from .setting import Setting

__all__ = [
    "Role",
    "User",
    "Work",
    "WorkStatus",
    "WorkType",
    "Nomination",
    "InvalidTransition",
    "Rating",
    "PasswordReset",
    "Setting",
]
