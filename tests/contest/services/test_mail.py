import smtplib

import pytest

from contest.services import mail
from contest.services.mail import Mailer, NotificationKind, render_notification


@pytest.mark.parametrize(
    ('kind', 'payload', 'fragment'),
    [
        (NotificationKind.REGISTRATION, {'full_name': 'Иван'}, 'Здравствуйте, Иван!'),
        (NotificationKind.PASSWORD_RESET, {'token': 'abc123'}, 'reset-password?token=abc123'),
        (
            NotificationKind.WORK_SUBMITTED,
            {'full_name': 'Иван', 'work_title': 'Письмо', 'nomination': 'Великая Отечественная война'},
            'в номинации «Великая Отечественная война»',
        ),
        (
            NotificationKind.WORK_RATED,
            {'full_name': 'Иван', 'work_title': 'Письмо', 'score': 9, 'comment': None},
            'Комментарий не добавлен',
        ),
        (NotificationKind.WORKS_ASSIGNED, {'expert_name': 'Анна', 'works_count': 3}, '<b>3</b>'),
    ],
)
def test_render_notification_fills_templates(kind: NotificationKind, payload: dict, fragment: str) -> None:
    subject, body = render_notification(kind, payload)

    assert subject
    assert fragment in body
    assert '<html>' in body


def test_render_notification_escapes_body_but_not_subject() -> None:
    subject, body = render_notification(
        NotificationKind.WORK_SUBMITTED,
        {'full_name': '<b>Иван</b>', 'work_title': 'Tom & Jerry', 'nomination': 'СВО'},
    )

    assert subject == 'Ваша работа «Tom & Jerry» принята!'
    assert '&lt;b&gt;Иван&lt;/b&gt;' in body


def test_build_message_has_html_alternative() -> None:
    mailer = Mailer(host='smtp.test', port=25, user='', password='', sender='noreply@example.com')

    message = mailer.build_message(NotificationKind.REGISTRATION, 'student@example.com', {'full_name': 'Иван'})

    assert message['To'] == 'student@example.com'
    assert 'noreply@example.com' in message['From']
    assert message.get_body(preferencelist=('html',)) is not None


def test_notify_sends_over_smtp(monkeypatch: pytest.MonkeyPatch) -> None:
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout):
            self.host, self.port = host, port

        def __enter__(self):
            return self

        def __exit__(self, *_exc):
            return False

        def starttls(self):
            sent.append('starttls')

        def login(self, user, password):
            sent.append(('login', user))

        def send_message(self, message):
            sent.append(message['To'])

    monkeypatch.setattr(mail.smtplib, 'SMTP', FakeSMTP)
    mailer = Mailer(host='smtp.test', port=587, user='robot', password='pw', sender='noreply@example.com')

    mailer.notify(NotificationKind.WORKS_ASSIGNED, 'expert@example.com', {'expert_name': 'Анна', 'works_count': 2})

    assert sent == ['starttls', ('login', 'robot'), 'expert@example.com']


def test_notify_logs_and_swallows_smtp_failures(monkeypatch: pytest.MonkeyPatch, caplog) -> None:
    def refuse(*_args, **_kwargs):
        raise smtplib.SMTPConnectError(421, 'unavailable')

    monkeypatch.setattr(mail.smtplib, 'SMTP', refuse)
    mailer = Mailer(host='smtp.test', port=25, user='', password='', sender='noreply@example.com')

    mailer.notify(NotificationKind.REGISTRATION, 'student@example.com', {'full_name': 'Иван'})

    assert 'registration' in caplog.text
    assert 'student@example.com' in caplog.text
