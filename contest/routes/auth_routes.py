import re
import uuid
from datetime import datetime, timedelta

import jwt
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from contest.auth import jwt_handler
from contest.auth.dependencies import get_current_user
from contest.auth.passwords import (
    get_password_hash,
    hash_refresh_token,
    refresh_token_matches,
    verify_password,
)
from contest.core import clock, config
from contest.database import get_db
from contest.models.password_reset import PasswordReset
from contest.models.user import Role, User
from contest.routes.common import MessageResponse, database_unavailable
from contest.services.mail import Mailer, NotificationKind, get_mailer

router = APIRouter(tags=['auth'])

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 100
PHONE_PATTERN = re.compile(r'^[\d\s+\-()]+$')
GRADE_PATTERN = re.compile(r'^(1[0-1]|[1-9])([А-Яа-яЁёA-Za-z])?$')
FORGOT_PASSWORD_MESSAGE = 'If the email is registered, password reset instructions have been sent.'
INVALID_CREDENTIALS_DETAIL = 'Invalid email or password.'
INVALID_REFRESH_DETAIL = 'Invalid token'


def normalize_phone(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if not PHONE_PATTERN.match(normalized):
        raise ValueError('Invalid phone number.')
    return normalized


def normalize_grade(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not GRADE_PATTERN.match(normalized):
        raise ValueError('Grade must be 1-11, optionally followed by a class letter.')
    return normalized


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)
    full_name: str = Field(min_length=2, max_length=200)
    phone: str | None = None
    school: str = Field(min_length=1, max_length=300)
    grade: str
    privacy_accepted: bool

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('full_name', 'school')
    @classmethod
    def strip_required(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field is required.')
        return normalized

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value: str | None) -> str | None:
        return normalize_phone(value)

    @field_validator('grade')
    @classmethod
    def validate_grade(cls, value: str) -> str:
        return normalize_grade(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH)


class UserSummary(BaseModel):
    id: int
    email: str
    full_name: str
    role: Role
    school: str | None = None
    grade: str | None = None

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = 'bearer'
    user: UserSummary


class ProfileResponse(UserSummary):
    phone: str | None = None
    created_at: datetime | None = None


def issue_tokens(user: User) -> dict:
    """Create a fresh token pair and remember the refresh token's hash. The caller commits."""
    tokens = jwt_handler.create_token_pair(user.id, user.email, Role(user.role).value)
    user.refresh_token_hash = hash_refresh_token(tokens['refresh_token'])
    return tokens


@router.post('/register', response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    data: RegisterRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    if not data.privacy_accepted:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Consent to personal data processing is required.',
        )

    try:
        if db.query(User).filter(User.email == data.email).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='A user with this email already exists.',
            )

        user = User(
            email=data.email,
            password_hash=get_password_hash(data.password),
            full_name=data.full_name,
            phone=data.phone,
            school=data.school,
            grade=data.grade,
            privacy_accepted=True,
            role=Role.STUDENT,
            is_blocked=False,
        )
        db.add(user)
        db.flush()
        tokens = issue_tokens(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='A user with this email already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    background_tasks.add_task(
        mailer.notify,
        NotificationKind.REGISTRATION,
        user.email,
        {'full_name': user.full_name},
    )

    return AuthResponse(**tokens, user=UserSummary.model_validate(user))


@router.post('/login', response_model=AuthResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.email == data.email).first()

        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS_DETAIL)

        if user.is_blocked:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Account is blocked.')

        if not verify_password(data.password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS_DETAIL)

        tokens = issue_tokens(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return AuthResponse(**tokens, user=UserSummary.model_validate(user))


@router.post('/refresh', response_model=AuthResponse)
def refresh(data: RefreshTokenRequest, db: Session = Depends(get_db)):
    # Every failure collapses to the same 401
    try:
        payload = jwt_handler.decode_refresh_token(data.refresh_token)
        user = db.get(User, int(payload['sub']))

        if (
            user is None
            or user.is_blocked
            or not refresh_token_matches(data.refresh_token, user.refresh_token_hash)
        ):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_REFRESH_DETAIL)

        tokens = issue_tokens(user)
        db.commit()
        db.refresh(user)
    except (jwt.PyJWTError, KeyError, ValueError, TypeError, SQLAlchemyError) as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_REFRESH_DETAIL) from exc

    return AuthResponse(**tokens, user=UserSummary.model_validate(user))


@router.post('/logout', response_model=MessageResponse)
def logout(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        current_user.refresh_token_hash = None
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return MessageResponse(message='Logged out.')


@router.post('/forgot-password', response_model=MessageResponse)
def forgot_password(
    data: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    # The response never reveals whether the email is registered
    try:
        user = db.query(User).filter(User.email == data.email).first()
        if user is None:
            return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

        token = uuid.uuid4().hex
        db.add(
            PasswordReset(
                user_id=user.id,
                token=token,
                expires_at=clock.utcnow() + timedelta(minutes=config.PASSWORD_RESET_EXPIRES_MINUTES),
                used=False,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    background_tasks.add_task(mailer.notify, NotificationKind.PASSWORD_RESET, user.email, {'token': token})

    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post('/reset-password', response_model=MessageResponse)
def reset_password(data: ResetPasswordRequest, db: Session = Depends(get_db)):
    try:
        password_reset = db.query(PasswordReset).filter(PasswordReset.token == data.token).first()

        if password_reset is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Invalid password reset link.',
            )

        if clock.as_utc(password_reset.expires_at) < clock.utcnow():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='The password reset link has expired.',
            )

        if password_reset.used:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='The password reset link has already been used.',
            )

        user = password_reset.user
        user.password_hash = get_password_hash(data.password)
        user.refresh_token_hash = None
        password_reset.used = True
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return MessageResponse(message='Password changed.')


@router.get('/profile', response_model=ProfileResponse)
def profile(current_user: User = Depends(get_current_user)):
    return current_user
