"""Error taxonomy for authentication, persistence and the notification pipeline."""

from fastapi import status


class LibraryError(Exception):
    """Base class for application errors."""

    pass


class ConfigurationError(LibraryError):
    """A required setting is missing or cannot be parsed."""

    pass


class AuthError(LibraryError):
    """Authentication or authorization failed."""

    status_code = status.HTTP_401_UNAUTHORIZED


class InvalidTokenError(AuthError):
    """Access token has a bad signature, is malformed or expired."""

    pass


class SessionError(AuthError):
    """The refresh path could not extend the session."""

    pass


class NoSessionError(SessionError):
    """No refresh token was presented."""

    pass


class UnknownSessionError(SessionError):
    """The presented refresh token is not the user's current one."""

    pass


class ExpiredSessionError(SessionError):
    """The refresh token exists but its expiry has passed."""

    pass


class ForbiddenRoleError(AuthError):
    """Authenticated, but the role is not allowed on this route."""

    status_code = status.HTTP_403_FORBIDDEN


class StorageError(LibraryError):
    """A database read or write failed."""

    pass


class EventPublishError(LibraryError):
    """An event could not be placed on the stream."""

    pass


class MailDeliveryError(LibraryError):
    """An email could not be handed to the mail relay."""

    pass
