"""New-book email notifications."""

import asyncio
import logging
import smtplib
from collections.abc import Callable
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from jinja2 import Environment, PackageLoader, TemplateError, select_autoescape
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from library_api.core.config import Settings
from library_api.core.exceptions import ConfigurationError, MailDeliveryError
from library_api.core.security import TokenIssuer
from library_api.models import User
from library_api.schemas.events import BookPayload

logger = logging.getLogger(__name__)

NEW_BOOK_SUBJECT = "A new book is available!"
NEW_BOOK_TEMPLATE = "new_book.html"

TRANSIENT_SMTP_ERRORS = (
    smtplib.SMTPServerDisconnected,
    smtplib.SMTPConnectError,
    TimeoutError,
    ConnectionError,
)


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html: str) -> None: ...


@dataclass
class DeliveryReport:
    """Outcome of one notification fan-out."""

    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.sent) + len(self.failed)


class TemplateRenderer:
    """Render email bodies from the package's Jinja2 templates."""

    def __init__(self, site_url: str, api_prefix: str, issuer: TokenIssuer):
        self._env = Environment(
            loader=PackageLoader("library_api", "templates"),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.site_url = site_url.rstrip("/")
        self.api_prefix = api_prefix
        self._issuer = issuer

    def book_link(self, book_id: int) -> str:
        return f"{self.site_url}{self.api_prefix}/books/{book_id}"

    def unsubscribe_link(self, user_id: int) -> str:
        token = self._issuer.issue_unsubscribe_token(user_id)
        return f"{self.site_url}{self.api_prefix}/mailing/unsubscribe/{token}"

    def render_new_book(self, book: BookPayload, user_id: int) -> str:
        template = self._env.get_template(NEW_BOOK_TEMPLATE)
        return template.render(
            title=book.title,
            author=book.author,
            genres=book.genre_names,
            description=book.description,
            book_link=self.book_link(book.id),
            unsubscribe_link=self.unsubscribe_link(user_id),
        )


class SmtpMailer:
    """Send HTML mail through an authenticated SMTP relay."""

    def __init__(self, settings: Settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.sender = settings.smtp_from or settings.smtp_username
        self.use_tls = settings.smtp_use_tls
        self.timeout = settings.smtp_timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.username and self.password)

    async def send(self, to: str, subject: str, html: str) -> None:
        """Deliver one message without blocking the event loop.

        Raises:
            ConfigurationError: If SMTP credentials are not set
            MailDeliveryError: If the relay rejects the message
        """
        if not self.is_configured:
            raise ConfigurationError("SMTP_USERNAME or SMTP_PASSWORD is not set")

        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.attach(MIMEText(html, "html", "utf-8"))

        try:
            await asyncio.to_thread(self._deliver, to, message)
        except (smtplib.SMTPException, OSError) as e:
            raise MailDeliveryError(f"Failed to send email to {to}: {e}") from e
        logger.info("Email sent to %s", to)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(TRANSIENT_SMTP_ERRORS),
        reraise=True,
    )
    def _deliver(self, to: str, message: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            server.login(self.username, self.password)
            server.sendmail(self.sender, [to], message.as_string())


class NewBookNotifier:
    """Email every mailing subscriber about a newly added book.

    Lookup and rendering failures are logged and end the notification; a
    failed send only affects its own recipient.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        mailer: Mailer,
        renderer: TemplateRenderer,
        concurrency: int = 5,
    ):
        self._session_factory = session_factory
        self._mailer = mailer
        self._renderer = renderer
        self._concurrency = max(1, concurrency)

    @classmethod
    def from_settings(
        cls, session_factory: Callable[[], AsyncSession], settings: Settings
    ) -> "NewBookNotifier":
        return cls(
            session_factory,
            SmtpMailer(settings),
            TemplateRenderer(settings.site_url, settings.api_v1_prefix, TokenIssuer(settings)),
            concurrency=settings.mail_concurrency,
        )

    async def get_subscribers(self) -> list[tuple[int, str]]:
        """Ids and emails of users subscribed to the mailing."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(User.id, User.email).where(User.mailing == True)  # noqa: E712
            )
            return [(user_id, email) for user_id, email in result.all()]

    async def notify(self, book: BookPayload) -> DeliveryReport:
        report = DeliveryReport()

        if getattr(self._mailer, "is_configured", True) is False:
            logger.error("SMTP credentials are not configured, skipping mailing for book %s", book.id)
            return report

        try:
            recipients = await self.get_subscribers()
        except SQLAlchemyError as e:
            logger.error("Failed to get subscribers: %s", e)
            return report
        logger.info("Found %d subscribers for book %s", len(recipients), book.id)

        try:
            messages = {
                email: self._renderer.render_new_book(book, user_id) for user_id, email in recipients
            }
        except TemplateError as e:
            logger.error("Failed to render new book email for book %s: %s", book.id, e)
            return report

        semaphore = asyncio.Semaphore(self._concurrency)

        async def deliver(email: str, html: str) -> None:
            async with semaphore:
                try:
                    await self._mailer.send(email, NEW_BOOK_SUBJECT, html)
                except Exception as e:
                    logger.error("Failed to send new book email to %s: %s", email, e)
                    report.failed.append(email)
                else:
                    report.sent.append(email)

        await asyncio.gather(*(deliver(email, html) for email, html in messages.items()))
        logger.info(
            "New book %s mailing finished: %d sent, %d failed",
            book.id,
            len(report.sent),
            len(report.failed),
        )
        return report
