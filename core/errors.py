"""
core/errors.py -- Domain error taxonomy shared by every layer.

Domain code (auth/, catalog/) raises these; api/main.py owns the single
exception handler that turns them into the ErrorResponse envelope. Each
class carries the HTTP status it maps to so the mapping lives in one place
and route handlers never pick status codes for domain failures.

code is machine-stable (clients branch on it); message is for humans.

Login failures deliberately collapse "unknown identity" and "wrong password"
into Unauthorized with one message so responses cannot be used to enumerate
accounts.

Layer rule: core/ is the kernel. No imports from api/, auth/, catalog/, client/.
"""

from __future__ import annotations


class TownzyError(Exception):
    """Base class for all expected, caller-visible failures."""

    status_code: int = 500
    default_code: str = "error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class InvalidArgument(TownzyError):
    """Malformed or missing input. Always recoverable by the caller."""

    status_code = 400
    default_code = "invalid_argument"


class Conflict(TownzyError):
    """Uniqueness violation (handle, email, mobile number, sibling name)."""

    status_code = 400
    default_code = "conflict"


class InvalidState(TownzyError):
    """Structurally disallowed operation: wrong tree level, non-empty children."""

    status_code = 400
    default_code = "invalid_state"


class Unauthenticated(TownzyError):
    """No credential was presented."""

    status_code = 401
    default_code = "unauthenticated"


class Unauthorized(TownzyError):
    """Login rejected. Same message for unknown identity and wrong password."""

    status_code = 401
    default_code = "invalid_credentials"


class Forbidden(TownzyError):
    """Credential present but insufficient: wrong role, wrong owner, expired or bad signature."""

    status_code = 403
    default_code = "forbidden"


class NotFound(TownzyError):
    """Referenced resource absent or inactive."""

    status_code = 404
    default_code = "not_found"


class Internal(TownzyError):
    """Storage unavailable, identifier space exhausted, or similar server-side failure."""

    status_code = 500
    default_code = "internal_error"


class TreeCorruption(Internal):
    """A parent walk exceeded the hop cap or hit a dangling parent reference.

    Kept distinct from NotFound: the node exists, the data around it is broken.
    """

    default_code = "tree_corrupted"
