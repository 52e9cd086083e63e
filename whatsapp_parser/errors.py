"""Failure kinds surfaced by the parser service.

"No match" is never an error: it degrades to low confidence and the
manual-review status. Only the kinds below reach the caller.
"""

from typing import Optional


class ParserError(Exception):
    """Base for every failure the service reports to its caller."""

    kind: str = "ParserError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidInput(ParserError):
    """Message content empty after trimming or longer than the limit."""

    kind = "InvalidInput"


class QuotaExceeded(ParserError):
    kind = "QuotaExceeded"

    def __init__(self, feature: str, current_usage: int, limit: int) -> None:
        super().__init__(
            f"Monthly limit of {limit} {feature} calls exceeded "
            f"(current usage {current_usage}). Upgrade to Premium for unlimited processing."
        )
        self.feature = feature
        self.current_usage = current_usage
        self.limit = limit

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            feature=self.feature,
            currentUsage=self.current_usage,
            limit=self.limit,
        )
        return data


class StoreUnavailable(ParserError):
    """Raised by store adapters when the backing store cannot be reached."""

    kind = "StoreUnavailable"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFound(ParserError):
    kind = "NotFound"
