"""Exceptions shared by the prediction cache, automation engine and API."""


class UpstreamFetchError(Exception):
    """The prediction source failed: network error, timeout or non-success status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.body = body


class InvalidActionError(ValueError):
    """Manual trigger asked for an action other than raise/restore."""


class ActionDeliveryError(Exception):
    """A single delivery channel (webhook, command) failed to carry out an action."""
