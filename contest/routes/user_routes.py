import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from contest.auth.dependencies import get_current_user, require_admin
from contest.auth.passwords import generate_password, get_password_hash
from contest.auth.permissions import ensure_can_edit_profile
from contest.database import get_db
from contest.models.rating import Rating
from contest.models.user import Role, User
from contest.models.work import Work
from contest.routes.auth_routes import MIN_PASSWORD_LENGTH, normalize_grade, normalize_phone
from contest.routes.common import PageMeta, database_unavailable, page_meta

router = APIRouter(tags=['users'])

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class UserCounts(BaseModel):
    submitted_works: int = 0
    assigned_works: int = 0
    ratings: int = 0


class UserListItem(BaseModel):
    id: int
    email: str
    full_name: str
    phone: str | None = None
    role: Role
    school: str | None = None
    grade: str | None = None
    is_blocked: bool
    created_at: datetime | None = None
    counts: UserCounts = UserCounts()

    class Config:
        from_attributes = True


class UserDetail(UserListItem):
    privacy_accepted: bool
    updated_at: datetime | None = None


class UserListResponse(BaseModel):
    data: list[UserListItem]
    meta: PageMeta


class UserProfile(BaseModel):
    id: int
    email: str
    full_name: str
    phone: str | None = None
    role: Role
    school: str | None = None
    grade: str | None = None

    class Config:
        from_attributes = True


class UpdateUserRequest(BaseModel):
    full_name: str | None = Field(default=None, min_length=2, max_length=200)
    phone: str | None = None
    school: str | None = Field(default=None, max_length=300)
    grade: str | None = None

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, value: str | None) -> str:
        # An unset name is skipped by exclude_unset; an explicit null is not
        if value is None:
            raise ValueError('Full name is required.')
        return value.strip()

    @field_validator('school')
    @classmethod
    def strip_school(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip()

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)

    @field_validator('grade')
    @classmethod
    def validate_grade(cls, value: str | None) -> str | None:
        return normalize_grade(value)


class BlockStatusResponse(BaseModel):
    id: int
    email: str
    full_name: str
    is_blocked: bool

    class Config:
        from_attributes = True


class CreateExpertRequest(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=200)
    password: str | None = Field(default=None, min_length=MIN_PASSWORD_LENGTH, max_length=100)
    phone: str | None = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('full_name')
    @classmethod
    def strip_full_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Full name is required.')
        return normalized

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)


class CreateExpertResponse(BaseModel):
    id: int
    email: str
    full_name: str
    temporary_password: str


class PasswordResetByAdminResponse(BaseModel):
    user_id: int
    email: str
    new_password: str
    message: str


class ExpertItem(BaseModel):
    id: int
    email: str
    full_name: str
    assigned_works: int
    ratings: int


def count_columns():
    submitted = (
        select(func.count(Work.id)).where(Work.student_id == User.id).correlate(User).scalar_subquery()
    )
    assigned = (
        select(func.count(Work.id)).where(Work.expert_id == User.id).correlate(User).scalar_subquery()
    )
    ratings = (
        select(func.count(Rating.id)).where(Rating.expert_id == User.id).correlate(User).scalar_subquery()
    )
    return submitted, assigned, ratings


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')
    return user


def _with_counts(model: type[UserListItem], user: User, submitted: int, assigned: int, ratings: int):
    item = model.model_validate(user)
    return item.model_copy(
        update={'counts': UserCounts(submitted_works=submitted, assigned_works=assigned, ratings=ratings)}
    )


@router.get('', response_model=UserListResponse)
def list_users(
    role: Role | None = Query(default=None),
    is_blocked: bool | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(User)
        if role is not None:
            query = query.filter(User.role == role)
        if is_blocked is not None:
            query = query.filter(User.is_blocked.is_(is_blocked))
        if search and search.strip():
            pattern = f'%{search.strip()}%'
            query = query.filter(
                or_(User.full_name.ilike(pattern), User.email.ilike(pattern), User.school.ilike(pattern))
            )

        total = query.count()
        submitted, assigned, ratings = count_columns()
        rows = (
            query.add_columns(submitted, assigned, ratings)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return UserListResponse(
        data=[_with_counts(UserListItem, *row) for row in rows],
        meta=page_meta(total, page, limit),
    )


@router.get('/experts', response_model=list[ExpertItem])
def list_experts(current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        _, assigned, ratings = count_columns()
        rows = (
            db.query(User, assigned, ratings)
            .filter(User.role == Role.EXPERT, User.is_blocked.is_(False))
            .order_by(User.full_name.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return [
        ExpertItem(
            id=expert.id,
            email=expert.email,
            full_name=expert.full_name,
            assigned_works=assigned_count,
            ratings=rating_count,
        )
        for expert, assigned_count, rating_count in rows
    ]


@router.post('/experts', response_model=CreateExpertResponse, status_code=status.HTTP_201_CREATED)
def create_expert(
    data: CreateExpertRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    temporary_password = data.password or generate_password()

    try:
        if db.query(User).filter(User.email == data.email).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='A user with this email already exists.',
            )

        expert = User(
            email=data.email,
            password_hash=get_password_hash(temporary_password),
            full_name=data.full_name,
            phone=data.phone,
            role=Role.EXPERT,
            privacy_accepted=True,
            is_blocked=False,
        )
        db.add(expert)
        db.commit()
        db.refresh(expert)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='A user with this email already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s created expert %s', current_user.id, expert.id)

    return CreateExpertResponse(
        id=expert.id,
        email=expert.email,
        full_name=expert.full_name,
        temporary_password=temporary_password,
    )


@router.get('/{user_id}', response_model=UserDetail)
def get_user(user_id: int, current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        submitted, assigned, ratings = count_columns()
        row = db.query(User, submitted, assigned, ratings).filter(User.id == user_id).first()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')

    return _with_counts(UserDetail, *row)


@router.patch('/{user_id}', response_model=UserProfile)
def update_user(
    user_id: int,
    data: UpdateUserRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_can_edit_profile(current_user, user_id)

    try:
        user = get_user_or_404(db, user_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(user, field, value)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return user


def set_blocked(db: Session, user_id: int, blocked: bool) -> User:
    user = get_user_or_404(db, user_id)

    if Role(user.role) is Role.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Administrators cannot be blocked.',
        )

    if user.is_blocked == blocked:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='User is already blocked.' if blocked else 'User is not blocked.',
        )

    user.is_blocked = blocked
    if blocked:
        user.refresh_token_hash = None
    db.commit()
    db.refresh(user)
    return user


@router.post('/{user_id}/block', response_model=BlockStatusResponse)
def block_user(user_id: int, current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        user = set_blocked(db, user_id, True)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s blocked user %s', current_user.id, user_id)
    return user


@router.post('/{user_id}/unblock', response_model=BlockStatusResponse)
def unblock_user(user_id: int, current_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        user = set_blocked(db, user_id, False)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s unblocked user %s', current_user.id, user_id)
    return user


@router.post('/{user_id}/reset-password', response_model=PasswordResetByAdminResponse)
def reset_user_password(
    user_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    new_password = generate_password()

    try:
        user = get_user_or_404(db, user_id)
        user.password_hash = get_password_hash(new_password)
        user.refresh_token_hash = None
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    logger.info('Admin %s reset the password of user %s', current_user.id, user_id)

    return PasswordResetByAdminResponse(
        user_id=user.id,
        email=user.email,
        new_password=new_password,
        message='Password reset.',
    )
