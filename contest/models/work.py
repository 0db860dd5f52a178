"""Work model and its review lifecycle."""

import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from contest.database import Base
from contest.models.user import enum_values


class WorkStatus(str, enum.Enum):
    MODERATION = "moderation"
    REVIEW = "review"
    RATED = "rated"


class Nomination(str, enum.Enum):
    VOV = "vov"
    SVO = "svo"


class WorkType(str, enum.Enum):
    ESSAY = "essay"
    DRAWING = "drawing"


NOMINATION_LABELS = {
    Nomination.VOV: "Великая Отечественная война",
    Nomination.SVO: "Специальная военная операция",
}

# moderation -> review -> rated, plus the two administrative rollbacks
ALLOWED_TRANSITIONS = {
    WorkStatus.MODERATION: frozenset({WorkStatus.REVIEW}),
    WorkStatus.REVIEW: frozenset({WorkStatus.RATED, WorkStatus.MODERATION}),
    WorkStatus.RATED: frozenset({WorkStatus.REVIEW}),
}


class InvalidTransition(ValueError):
    """Raised when a work is asked to move to a status it cannot reach."""

    def __init__(self, current: WorkStatus, target: WorkStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move work from '{current.value}' to '{target.value}'.")


class Work(Base):
    """Represents a contest submission and its stored file."""
    __tablename__ = "works"
    __table_args__ = (
        UniqueConstraint("student_id", "nomination", name="uq_works_student_nomination"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(300), nullable=False)
    nomination = Column(
        Enum(Nomination, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
    )
    work_type = Column(
        Enum(WorkType, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
    )
    file_key = Column(String(512), nullable=False)
    file_name = Column(String(512), nullable=False)
    file_mime = Column(String(128), nullable=False)
    file_size = Column(Integer, nullable=False)
    status = Column(
        Enum(WorkStatus, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
        default=WorkStatus.MODERATION,
    )
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    expert_id = Column(Integer, ForeignKey("users.id"), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    student = relationship("User", back_populates="submitted_works", foreign_keys=[student_id])
    expert = relationship("User", back_populates="assigned_works", foreign_keys=[expert_id])
    rating = relationship("Rating", back_populates="work", uselist=False, cascade="all, delete-orphan")

    @property
    def current_status(self) -> WorkStatus:
        return WorkStatus(self.status) if self.status is not None else WorkStatus.MODERATION

    @property
    def is_editable(self) -> bool:
        return self.current_status is WorkStatus.MODERATION

    def _move_to(self, source: WorkStatus, target: WorkStatus) -> None:
        current = self.current_status
        if current is not source or target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(current, target)
        self.status = target

    def assign_expert(self, expert_id: int) -> None:
        self._move_to(WorkStatus.MODERATION, WorkStatus.REVIEW)
        self.expert_id = expert_id

    def unassign_expert(self) -> None:
        self._move_to(WorkStatus.REVIEW, WorkStatus.MODERATION)
        self.expert_id = None

    def mark_rated(self) -> None:
        self._move_to(WorkStatus.REVIEW, WorkStatus.RATED)

    def reopen_review(self) -> None:
        self._move_to(WorkStatus.RATED, WorkStatus.REVIEW)
