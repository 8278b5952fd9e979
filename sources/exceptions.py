"""Errors raised by event source adapters."""


class SourceFetchError(Exception):
    """An upstream source could not be reached or returned an error."""


class RateLimitError(SourceFetchError):
    """The upstream kept answering 429 after all retries."""


class SyncCancelledError(Exception):
    """A fetch or sync run was cancelled by an operator."""
