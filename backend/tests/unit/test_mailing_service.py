"""Unit tests for new-book email notifications."""

import pytest

from library_api.core.config import Settings
from library_api.core.exceptions import ConfigurationError, MailDeliveryError
from library_api.core.security import TokenIssuer, get_password_hash
from library_api.models import User
from library_api.schemas.events import BookPayload, GenrePayload
from library_api.services.mailing import (
    NEW_BOOK_SUBJECT,
    NewBookNotifier,
    SmtpMailer,
    TemplateRenderer,
)


class FakeMailer:
    """Records messages; addresses in ``failing`` raise like a rejecting relay."""

    def __init__(self, failing: set[str] | None = None, configured: bool = True):
        self.sent: list[tuple[str, str, str]] = []
        self.failing = failing or set()
        self.is_configured = configured

    async def send(self, to: str, subject: str, html: str) -> None:
        if to in self.failing:
            raise MailDeliveryError(f"Failed to send email to {to}")
        self.sent.append((to, subject, html))


BOOK = BookPayload(
    id=3,
    title="The Left Hand of Darkness",
    author="Ursula K. Le Guin",
    published_year="1969",
    description="An envoy on the planet Gethen",
    genres=[GenrePayload(id=1, name="Science fiction"), GenrePayload(id=2, name="Classic")],
)


@pytest.fixture
def renderer(settings) -> TemplateRenderer:
    return TemplateRenderer("http://localhost:8080/", "/api/v1", TokenIssuer(settings))


async def add_users(session, *users):
    for email, mailing in users:
        session.add(
            User(
                name=email.split("@")[0],
                email=email,
                hashed_password=get_password_hash("secret1"),
                mailing=mailing,
            )
        )
    await session.commit()


class TestTemplateRenderer:
    def test_render_new_book(self, renderer):
        html = renderer.render_new_book(BOOK, user_id=42)

        assert "The Left Hand of Darkness" in html
        assert "Ursula K. Le Guin" in html
        assert "Science fiction, Classic" in html
        assert "http://localhost:8080/api/v1/books/3" in html
        assert "http://localhost:8080/api/v1/mailing/unsubscribe/" in html

    def test_unsubscribe_link_is_signed_per_user(self, renderer, settings):
        link = renderer.unsubscribe_link(42)

        token = link.rsplit("/", 1)[1]
        assert TokenIssuer(settings).validate_unsubscribe_token(token) == 42
        assert renderer.unsubscribe_link(43) != link

    def test_render_escapes_html(self, renderer):
        book = BOOK.model_copy(update={"title": "<script>alert(1)</script>"})

        html = renderer.render_new_book(book, user_id=42)

        assert "<script>" not in html
        assert "&lt;script&gt;" in html


@pytest.mark.asyncio
class TestNewBookNotifier:
    async def test_one_email_per_subscriber(self, session_factory, test_session, renderer):
        await add_users(
            test_session,
            ("anna@example.com", True),
            ("boris@example.com", True),
            ("quiet@example.com", False),
        )
        mailer = FakeMailer()
        notifier = NewBookNotifier(session_factory, mailer, renderer)

        report = await notifier.notify(BOOK)

        assert sorted(report.sent) == ["anna@example.com", "boris@example.com"]
        assert report.failed == []
        assert sorted(to for to, _, _ in mailer.sent) == ["anna@example.com", "boris@example.com"]
        for _, subject, html in mailer.sent:
            assert subject == NEW_BOOK_SUBJECT
            assert "The Left Hand of Darkness" in html

    async def test_failed_recipient_does_not_stop_others(
        self, session_factory, test_session, renderer
    ):
        await add_users(
            test_session,
            ("anna@example.com", True),
            ("broken@example.com", True),
            ("boris@example.com", True),
        )
        mailer = FakeMailer(failing={"broken@example.com"})
        notifier = NewBookNotifier(session_factory, mailer, renderer, concurrency=1)

        report = await notifier.notify(BOOK)

        assert report.failed == ["broken@example.com"]
        assert sorted(report.sent) == ["anna@example.com", "boris@example.com"]
        assert report.attempted == 3

    async def test_no_subscribers(self, session_factory, test_session, renderer):
        await add_users(test_session, ("quiet@example.com", False))
        mailer = FakeMailer()

        report = await NewBookNotifier(session_factory, mailer, renderer).notify(BOOK)

        assert report.attempted == 0
        assert mailer.sent == []

    async def test_unconfigured_mailer_skips_delivery(
        self, session_factory, test_session, renderer
    ):
        await add_users(test_session, ("anna@example.com", True))
        mailer = FakeMailer(configured=False)

        report = await NewBookNotifier(session_factory, mailer, renderer).notify(BOOK)

        assert report.attempted == 0
        assert mailer.sent == []


@pytest.mark.asyncio
class TestSmtpMailer:
    async def test_send_requires_credentials(self):
        mailer = SmtpMailer(Settings(secret_key="x", smtp_username=None, smtp_password=None))

        assert mailer.is_configured is False
        with pytest.raises(ConfigurationError):
            await mailer.send("anna@example.com", NEW_BOOK_SUBJECT, "<p>hi</p>")


class TestSmtpMailerSettings:
    def test_sender_defaults_to_username(self):
        mailer = SmtpMailer(
            Settings(secret_key="x", smtp_username="library@mail.ru", smtp_password="pw")
        )

        assert mailer.is_configured is True
        assert mailer.sender == "library@mail.ru"
