"""Email notifications.

Sending is fire-and-forget: handlers schedule ``Mailer.notify`` as a
background task and a delivery failure is only logged.
"""

import enum
import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from functools import lru_cache

from jinja2 import DictLoader, Environment, TemplateError, select_autoescape

from contest.core import config

logger = logging.getLogger(__name__)

SENDER_NAME = "Наследники Победы"


class NotificationKind(str, enum.Enum):
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"
    WORK_SUBMITTED = "work_submitted"
    WORK_RATED = "work_rated"
    WORKS_ASSIGNED = "works_assigned"


SUBJECTS = {
    NotificationKind.REGISTRATION: "Добро пожаловать в конкурс «Наследники Победы»!",
    NotificationKind.PASSWORD_RESET: "Сброс пароля: Наследники Победы",
    NotificationKind.WORK_SUBMITTED: "Ваша работа «{{ work_title }}» принята!",
    NotificationKind.WORK_RATED: "Ваша работа «{{ work_title }}» оценена!",
    NotificationKind.WORKS_ASSIGNED: "Вам назначены работы на проверку",
}

TEMPLATES = {
    "layout.html": (
        "<html><body style=\"font-family: Arial, sans-serif\">"
        "<h2>{{ heading }}</h2>{% block content %}{% endblock %}"
        "<p style=\"color:#888\">Это письмо отправлено автоматически, отвечать на него не нужно.</p>"
        "</body></html>"
    ),
    "registration.html": (
        "{% extends 'layout.html' %}{% set heading = 'Здравствуйте, ' ~ full_name ~ '!' %}"
        "{% block content %}<p>Вы зарегистрированы на конкурсе «Наследники Победы».</p>"
        "<p><a href=\"{{ frontend_url }}/login\">Войти в личный кабинет</a></p>{% endblock %}"
    ),
    "password_reset.html": (
        "{% extends 'layout.html' %}{% set heading = 'Сброс пароля' %}"
        "{% block content %}<p>Чтобы задать новый пароль, перейдите по ссылке (действует 1 час):</p>"
        "<p><a href=\"{{ frontend_url }}/reset-password?token={{ token }}\">Сбросить пароль</a></p>"
        "<p>Если вы не запрашивали сброс, просто проигнорируйте это письмо.</p>{% endblock %}"
    ),
    "work_submitted.html": (
        "{% extends 'layout.html' %}{% set heading = 'Здравствуйте, ' ~ full_name ~ '!' %}"
        "{% block content %}<p>Ваша работа «{{ work_title }}» в номинации «{{ nomination }}» принята "
        "и ожидает модерации.</p><p><a href=\"{{ frontend_url }}/student\">Мои работы</a></p>{% endblock %}"
    ),
    "work_rated.html": (
        "{% extends 'layout.html' %}{% set heading = 'Здравствуйте, ' ~ full_name ~ '!' %}"
        "{% block content %}<p>Ваша работа «{{ work_title }}» оценена экспертом.</p>"
        "<p>Оценка: <b>{{ score }}</b></p><p>Комментарий: {{ comment or 'Комментарий не добавлен' }}</p>"
        "<p><a href=\"{{ frontend_url }}/student\">Мои работы</a></p>{% endblock %}"
    ),
    "works_assigned.html": (
        "{% extends 'layout.html' %}{% set heading = 'Здравствуйте, ' ~ expert_name ~ '!' %}"
        "{% block content %}<p>Вам назначено работ на проверку: <b>{{ works_count }}</b>.</p>"
        "<p><a href=\"{{ frontend_url }}/expert\">Перейти к проверке</a></p>{% endblock %}"
    ),
}

_environment = Environment(
    loader=DictLoader(TEMPLATES),
    autoescape=select_autoescape(default=True, default_for_string=True),
)
_subject_environment = Environment(autoescape=False)


def render_notification(kind: NotificationKind, payload: dict) -> tuple[str, str]:
    context = {"frontend_url": config.FRONTEND_URL, **payload}
    subject = _subject_environment.from_string(SUBJECTS[kind]).render(context)
    body = _environment.get_template(f"{kind.value}.html").render(context)
    return subject, body


class Mailer:
    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        sender: str | None = None,
    ):
        self.host = host or config.SMTP_HOST
        self.port = port or config.SMTP_PORT
        self.user = config.SMTP_USER if user is None else user
        self.password = config.SMTP_PASS if password is None else password
        self.sender = sender or config.SMTP_FROM

    def build_message(self, kind: NotificationKind, recipient: str, payload: dict) -> EmailMessage:
        subject, body = render_notification(kind, payload)
        message = EmailMessage()
        message["From"] = formataddr((SENDER_NAME, self.sender))
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content("Для просмотра письма используйте почтовый клиент с поддержкой HTML.")
        message.add_alternative(body, subtype="html")
        return message

    def notify(self, kind: NotificationKind, recipient: str, payload: dict) -> None:
        try:
            message = self.build_message(kind, recipient, payload)
            self._send(message)
        except (smtplib.SMTPException, OSError, TemplateError):
            logger.exception("Sending %s email to %s failed", kind.value, recipient)
            return
        logger.info("Sent %s email to %s", kind.value, recipient)

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=config.SMTP_TIMEOUT_SECONDS) as smtp:
            if self.user and self.password:
                smtp.starttls()
                smtp.login(self.user, self.password)
            smtp.send_message(message)


@lru_cache
def get_mailer() -> Mailer:
    return Mailer()
