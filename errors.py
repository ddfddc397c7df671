"""Error kinds shared by the store, the notifier and the HTTP layer."""
from typing import Optional


class CheckinError(Exception):
    kind = "error"

    def __init__(self, detail: str, result: Optional[dict] = None):
        super().__init__(detail)
        self.detail = detail
        self.result = result


class InvalidInput(CheckinError):
    kind = "invalid_input"


class NotFound(CheckinError):
    kind = "not_found"


class UpstreamUnavailable(CheckinError):
    """The database or the email provider could not be reached."""
    kind = "upstream_unavailable"


class PartialFailure(CheckinError):
    """Some, but not all, sends of a dispatch batch failed."""
    kind = "partial_failure"
