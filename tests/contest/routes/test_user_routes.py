import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from contest.auth.passwords import verify_password
from contest.models import Rating, Role, WorkStatus
from contest.routes.user_routes import (
    CreateExpertRequest,
    UpdateUserRequest,
    block_user,
    create_expert,
    get_user,
    list_experts,
    list_users,
    reset_user_password,
    unblock_user,
    update_user,
)


def _list(db, admin, **filters):
    params = {'role': None, 'is_blocked': None, 'search': None, 'page': 1, 'limit': 20}
    params.update(filters)
    return list_users(current_user=admin, db=db, **params)


def test_list_users_filters_and_counts(db, make_user, make_work) -> None:
    admin = make_user(role=Role.ADMIN)
    expert = make_user(role=Role.EXPERT, full_name='Анна Смирнова')
    student = make_user(full_name='Пётр Иванов', school='Гимназия №3')
    make_user(full_name='Blocked Student', is_blocked=True)
    make_work(student, expert=expert)

    students = _list(db, admin, role=Role.STUDENT)
    assert students.meta.total == 2
    assert {item.full_name for item in students.data} == {'Пётр Иванов', 'Blocked Student'}

    found = _list(db, admin, search='Гимназия')
    assert [item.id for item in found.data] == [student.id]
    assert found.data[0].counts.submitted_works == 1

    experts = _list(db, admin, role=Role.EXPERT)
    assert experts.data[0].counts.assigned_works == 1

    blocked = _list(db, admin, is_blocked=True)
    assert [item.full_name for item in blocked.data] == ['Blocked Student']


def test_list_users_paginates(db, make_user) -> None:
    admin = make_user(role=Role.ADMIN)
    for _ in range(5):
        make_user()

    page = _list(db, admin, role=Role.STUDENT, page=2, limit=2)

    assert len(page.data) == 2
    assert page.meta.total == 5
    assert page.meta.total_pages == 3


def test_list_experts_skips_blocked_and_sorts_by_name(db, make_user, make_work) -> None:
    admin = make_user(role=Role.ADMIN)
    boris = make_user(role=Role.EXPERT, full_name='Борис')
    anna = make_user(role=Role.EXPERT, full_name='Анна')
    make_user(role=Role.EXPERT, full_name='Вера', is_blocked=True)
    work = make_work(make_user(), expert=boris, status=WorkStatus.RATED)
    db.add(Rating(work_id=work.id, expert_id=boris.id, score=7))
    db.commit()

    experts = list_experts(current_user=admin, db=db)

    assert [expert.id for expert in experts] == [anna.id, boris.id]
    assert experts[1].assigned_works == 1
    assert experts[1].ratings == 1


def test_create_expert_generates_password_once(db, make_user) -> None:
    admin = make_user(role=Role.ADMIN)

    response = create_expert(
        CreateExpertRequest(email='New.Expert@example.com', full_name=' Эксперт '),
        current_user=admin,
        db=db,
    )

    assert response.email == 'new.expert@example.com'
    assert len(response.temporary_password) == 10
    assert response.temporary_password.isalnum()

    detail = get_user(user_id=response.id, current_user=admin, db=db)
    assert detail.role is Role.EXPERT
    assert detail.full_name == 'Эксперт'


def test_create_expert_rejects_duplicate_email(db, make_user) -> None:
    admin = make_user(role=Role.ADMIN)
    make_user(email='taken@example.com')

    with pytest.raises(HTTPException) as exception_info:
        create_expert(
            CreateExpertRequest(email='taken@example.com', full_name='Expert', password='secret123'),
            current_user=admin,
            db=db,
        )

    assert exception_info.value.status_code == 409


def test_get_user_returns_not_found(db, make_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_user(user_id=999, current_user=make_user(role=Role.ADMIN), db=db)

    assert exception_info.value.status_code == 404


def test_update_user_changes_only_given_fields(db, make_user) -> None:
    student = make_user(full_name='Old Name', school='Школа №1')

    profile = update_user(
        user_id=student.id,
        data=UpdateUserRequest(full_name='New Name', grade='11'),
        current_user=student,
        db=db,
    )

    assert profile.full_name == 'New Name'
    assert profile.grade == '11'
    assert profile.school == 'Школа №1'


def test_update_user_request_rejects_null_full_name() -> None:
    with pytest.raises(ValidationError, match='Full name is required.'):
        UpdateUserRequest(full_name=None)


def test_update_user_clears_school_with_null(db, make_user) -> None:
    student = make_user(full_name='Иван Петров', school='Школа №1')

    profile = update_user(
        user_id=student.id,
        data=UpdateUserRequest.model_validate({'school': None}),
        current_user=student,
        db=db,
    )

    assert profile.school is None
    assert profile.full_name == 'Иван Петров'


def test_update_user_rejects_other_profiles(db, make_user) -> None:
    student = make_user()
    other = make_user()

    with pytest.raises(HTTPException) as exception_info:
        update_user(user_id=other.id, data=UpdateUserRequest(full_name='Hacker'), current_user=student, db=db)

    assert exception_info.value.status_code == 403


def test_admin_can_update_any_profile(db, make_user) -> None:
    admin = make_user(role=Role.ADMIN)
    student = make_user()

    profile = update_user(user_id=student.id, data=UpdateUserRequest(school='Лицей'), current_user=admin, db=db)

    assert profile.school == 'Лицей'


def test_block_and_unblock_user(db, make_user) -> None:
    admin = make_user(role=Role.ADMIN)
    student = make_user(refresh_token_hash='hash')

    blocked = block_user(user_id=student.id, current_user=admin, db=db)
    assert blocked.is_blocked is True
    assert student.refresh_token_hash is None

    with pytest.raises(HTTPException) as exception_info:
        block_user(user_id=student.id, current_user=admin, db=db)
    assert exception_info.value.status_code == 400

    unblocked = unblock_user(user_id=student.id, current_user=admin, db=db)
    assert unblocked.is_blocked is False


def test_admin_cannot_be_blocked(db, make_user) -> None:
    admin = make_user(role=Role.ADMIN)
    other_admin = make_user(role=Role.ADMIN)

    with pytest.raises(HTTPException) as exception_info:
        block_user(user_id=other_admin.id, current_user=admin, db=db)

    assert exception_info.value.status_code == 403
    assert other_admin.is_blocked is False


def test_block_user_returns_not_found(db, make_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        block_user(user_id=404, current_user=make_user(role=Role.ADMIN), db=db)

    assert exception_info.value.status_code == 404


def test_reset_user_password_replaces_hash(db, make_user) -> None:
    admin = make_user(role=Role.ADMIN)
    student = make_user(refresh_token_hash='hash')

    response = reset_user_password(user_id=student.id, current_user=admin, db=db)

    assert verify_password(response.new_password, student.password_hash)
    assert student.refresh_token_hash is None
