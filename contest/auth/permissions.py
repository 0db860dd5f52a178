"""Per-entity access checks shared by the work and rating routes."""

from fastapi import HTTPException, status

from contest.models.user import Role, User
from contest.models.work import Work


def can_view_work(user: User, work: Work) -> bool:
    role = Role(user.role)
    if role is Role.ADMIN:
        return True
    if role is Role.STUDENT:
        return work.student_id == user.id
    if role is Role.EXPERT:
        return work.expert_id is not None and work.expert_id == user.id
    raise AssertionError(f"Unhandled role: {role!r}")


def ensure_can_view_work(user: User, work: Work) -> None:
    if not can_view_work(user, work):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You do not have access to this work.',
        )


def ensure_work_owner(user: User, work: Work, action: str) -> None:
    if work.student_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f'Only the author of this work can {action} it.',
        )


def ensure_can_edit_profile(user: User, target_user_id: int) -> None:
    role = Role(user.role)
    if role is Role.ADMIN:
        return
    if role in (Role.STUDENT, Role.EXPERT):
        if user.id == target_user_id:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only edit your own profile.',
        )
    raise AssertionError(f"Unhandled role: {role!r}")
