import os
from itertools import count

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ['BCRYPT_ROUNDS'] = '4'

from contest.auth.passwords import get_password_hash  # noqa: E402
from contest.database import Base  # noqa: E402
from contest.models import Nomination, Role, User, Work, WorkStatus, WorkType  # noqa: E402
from contest.services.storage import StoredFile  # noqa: E402

DEFAULT_PASSWORD = 'secret123'

_sequence = count(1)


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.deleted = []

    def put(self, data: bytes, file_name: str, mime_type: str) -> StoredFile:
        key = f'works/{next(_sequence)}-{file_name}'
        self.objects[key] = (data, mime_type)
        return StoredFile(key=key, size=len(data))

    def signed_url(self, key: str, ttl_seconds: int | None = None) -> str:
        return f'https://storage.test/{key}?expires={ttl_seconds or 3600}'

    def delete(self, key: str) -> None:
        self.deleted.append(key)
        self.objects.pop(key, None)

    def get(self, key: str) -> bytes:
        return self.objects[key][0]


class RecordingMailer:
    def __init__(self):
        self.sent = []

    def notify(self, kind, recipient, payload) -> None:
        self.sent.append((kind, recipient, payload))


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def make_user(db):
    def _make_user(role: Role = Role.STUDENT, **overrides) -> User:
        number = next(_sequence)
        values = {
            'email': f'{role.value}{number}@example.com',
            'password_hash': get_password_hash(DEFAULT_PASSWORD),
            'full_name': f'{role.value.title()} {number}',
            'role': role,
            'school': 'Школа №1' if role is Role.STUDENT else None,
            'grade': '9А' if role is Role.STUDENT else None,
            'privacy_accepted': True,
            'is_blocked': False,
        }
        values.update(overrides)
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_work(db):
    def _make_work(
        student: User,
        nomination: Nomination = Nomination.VOV,
        expert: User | None = None,
        **overrides,
    ) -> Work:
        number = next(_sequence)
        values = {
            'title': f'Work {number}',
            'nomination': nomination,
            'work_type': WorkType.ESSAY,
            'file_key': f'works/{number}.pdf',
            'file_name': f'{number}.pdf',
            'file_mime': 'application/pdf',
            'file_size': 128,
            'status': WorkStatus.REVIEW if expert else WorkStatus.MODERATION,
            'student_id': student.id,
            'expert_id': expert.id if expert else None,
        }
        values.update(overrides)
        work = Work(**values)
        db.add(work)
        db.commit()
        db.refresh(work)
        return work

    return _make_work

