"""
Exception types shared by the crawler, the analyzer and the store.

Most failures inside a run are absorbed where they happen and turned into a
skipped unit of work; only ``StoreUnavailableError`` is meant to reach the
top-level caller.
"""


class CorpusError(Exception):
    """Base class for all errors raised by this project."""


class StoreUnavailableError(CorpusError):
    """The store could not be opened or the baseline state could not be loaded."""


class MalformedResponseError(CorpusError):
    """A catalog payload could not be parsed or lacks the expected fields."""


class PackageError(CorpusError):
    """A downloaded text package is not a zip or holds no text file."""
