"""User model definitions."""

import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String, func
from sqlalchemy.orm import relationship

from contest.database import Base


class Role(str, enum.Enum):
    """Closed set of account roles."""

    STUDENT = "student"
    EXPERT = "expert"
    ADMIN = "admin"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(32))
    role = Column(
        Enum(Role, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
        default=Role.STUDENT,
    )
    school = Column(String(300))
    grade = Column(String(8))
    privacy_accepted = Column(Boolean, nullable=False, default=False)
    is_blocked = Column(Boolean, nullable=False, default=False)
    refresh_token_hash = Column(String(128))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    submitted_works = relationship("Work", back_populates="student", foreign_keys="Work.student_id")
    assigned_works = relationship("Work", back_populates="expert", foreign_keys="Work.expert_id")
    ratings = relationship("Rating", back_populates="expert")
