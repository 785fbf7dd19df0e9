"""Error taxonomy shared by the resolver, the negotiator and the route selector.

Every error is terminal for the call that raised it.  ``NotFound`` and
``Unavailable`` carry no detail: their string form is fixed so a
caller can never learn why a lookup failed or which dependency is down.
"""

from typing import Optional


class PayRailError(Exception):
    """Base exception for payrail errors."""

    code = "error"
    public_message = "Request failed"

    def __str__(self) -> str:
        return self.public_message


class NotFound(PayRailError):
    """Identifier unknown, malformed, or failing verification."""

    code = "not_found"
    public_message = "not found"

    def __init__(self) -> None:
        super().__init__(self.public_message)


class Rejected(PayRailError):
    """Caller-supplied input violates declared bounds."""

    code = "rejected"

    INVALID_AMOUNT = "invalid amount"
    BELOW_MINIMUM = "below minimum"
    ABOVE_MAXIMUM = "above maximum"
    COMMENT_TOO_LONG = "comment too long"
    INVALID_COMMENT = "invalid comment"
    INVALID_SENDER = "invalid sender"
    INVALID_RECIPIENT = "invalid recipient"
    INVALID_FILTER = "invalid filter"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    @property
    def public_message(self) -> str:  # type: ignore[override]
        return self.reason


class Unavailable(PayRailError):
    """A required secret or collaborator is missing or unreachable."""

    code = "unavailable"
    public_message = "service unavailable"

    def __init__(self, detail: Optional[str] = None) -> None:
        # ``detail`` is for server-side logs only and never rendered to callers.
        super().__init__(self.public_message)
        self.detail = detail


class Timeout(PayRailError):
    """A collaborator call exceeded its time budget."""

    code = "timeout"
    public_message = "upstream timeout"

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(self.public_message)
        self.detail = detail
