"""
Error taxonomy for cookie issuance and validation.

None of these are retried internally.  Callers may retry
``StorageUnavailable`` with their own backoff policy.
"""

from __future__ import annotations


class SessionCookieError(Exception):
    """Base class for every error raised by this package."""


class InvalidRequest(SessionCookieError):
    """An issuance request failed input validation."""


class InvalidUser(InvalidRequest):
    """The user identifier is empty or cannot be packed into a cookie."""


class StorageUnavailable(SessionCookieError):
    """The token store could not be written or read."""


class SignatureError(SessionCookieError):
    """A cookie value is malformed, has a bad MAC, or names no live session."""


class CookieExpired(SessionCookieError):
    """A cookie value is correctly signed but past its expiration."""


class AttributeConflict(SessionCookieError):
    """A cookie would be sent with ``SameSite=None`` but without ``Secure``."""
