from __future__ import annotations


class PollerError(Exception):
    """Base for failures raised inside a poll cycle. None of them are fatal."""


class FetchFailure(PollerError):
    """Network error, timeout or non-2xx answer from a feed."""

    def __init__(self, feed: str, message: str):
        super().__init__(f"{feed}: {message}")
        self.feed = feed


class ParseFailure(PollerError):
    """Feed payload that cannot be read as the expected document shape."""

    def __init__(self, feed: str, message: str):
        super().__init__(f"{feed}: {message}")
        self.feed = feed


class PersistenceFailure(PollerError):
    """A single alert document was rejected by the store."""

    def __init__(self, identifier: str, message: str):
        super().__init__(f"{identifier}: {message}")
        self.identifier = identifier
