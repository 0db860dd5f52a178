from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import OperationalError

from contest.models import Setting
from contest.services.settings import (
    RATING_SCALE_KEY,
    SUBMISSION_DEADLINE_KEY,
    ContestSettings,
    RatingScale,
    get_contest_settings,
    load_contest_settings,
    parse_deadline,
    parse_rating_scale,
    upsert_setting,
)


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        (None, None),
        ('', None),
        ('2026-05-01T00:00:00Z', datetime(2026, 5, 1, tzinfo=timezone.utc)),
        ('2026-05-01T03:00:00+03:00', datetime(2026, 5, 1, tzinfo=timezone.utc)),
        ('2026-05-01T00:00:00', datetime(2026, 5, 1, tzinfo=timezone.utc)),
    ],
)
def test_parse_deadline(value, expected) -> None:
    assert parse_deadline(value) == expected


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        (None, RatingScale(min=1, max=10)),
        ('garbage', RatingScale(min=1, max=10)),
        ({'max': 5}, RatingScale(min=1, max=5)),
        ({'min': '2', 'max': '8'}, RatingScale(min=2, max=8)),
        ({'min': 2, 'max': 4}, RatingScale(min=2, max=4)),
    ],
)
def test_parse_rating_scale(value, expected: RatingScale) -> None:
    assert parse_rating_scale(value) == expected


def test_rating_scale_contains_is_inclusive() -> None:
    scale = RatingScale(min=1, max=10)

    assert scale.contains(1)
    assert scale.contains(10)
    assert not scale.contains(0)
    assert not scale.contains(11)


def test_contest_is_open_without_deadline() -> None:
    assert ContestSettings().is_submission_open(datetime(2100, 1, 1, tzinfo=timezone.utc))


def test_contest_closes_after_deadline() -> None:
    deadline = datetime(2026, 5, 1, tzinfo=timezone.utc)
    contest_settings = ContestSettings(submission_deadline=deadline)

    assert contest_settings.is_submission_open(deadline)
    assert not contest_settings.is_submission_open(deadline + timedelta(microseconds=1))


def test_load_contest_settings_reads_rows(db) -> None:
    upsert_setting(db, SUBMISSION_DEADLINE_KEY, '2026-05-01T00:00:00+00:00')
    upsert_setting(db, RATING_SCALE_KEY, {'min': 1, 'max': 12})
    db.commit()

    contest_settings = load_contest_settings(db)

    assert contest_settings.submission_deadline == datetime(2026, 5, 1, tzinfo=timezone.utc)
    assert contest_settings.rating_scale == RatingScale(min=1, max=12)


def test_upsert_setting_updates_existing_row(db) -> None:
    upsert_setting(db, RATING_SCALE_KEY, {'min': 1, 'max': 10})
    db.commit()
    upsert_setting(db, RATING_SCALE_KEY, {'min': 1, 'max': 50})
    db.commit()

    assert db.query(Setting).count() == 1
    assert db.get(Setting, RATING_SCALE_KEY).value == {'min': 1, 'max': 50}


def test_load_contest_settings_defaults_on_empty_table(db) -> None:
    assert load_contest_settings(db) == ContestSettings()


def test_load_contest_settings_ignores_malformed_values(db, caplog) -> None:
    upsert_setting(db, SUBMISSION_DEADLINE_KEY, 'next friday')
    upsert_setting(db, RATING_SCALE_KEY, {'min': 1, 'max': 'ten'})
    db.commit()

    contest_settings = load_contest_settings(db)

    assert contest_settings == ContestSettings()
    assert contest_settings.is_submission_open()
    assert "malformed submission deadline 'next friday'" in caplog.text
    assert 'malformed rating scale' in caplog.text


def test_get_contest_settings_reports_database_failure(db, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_query(*_args):
        raise OperationalError('SELECT settings', {}, Exception('connection lost'))

    monkeypatch.setattr(db, 'query', failing_query)

    with pytest.raises(HTTPException) as exception_info:
        get_contest_settings(db=db)

    assert exception_info.value.status_code == 503
