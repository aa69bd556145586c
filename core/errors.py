"""
Error types raised by Focusd components.

None of these ever escape the engine's tick path: the engine absorbs
them into an allowed/not-allowed decision or a logged side effect.
"""


class FocusdError(Exception):
    """Base class for all Focusd errors."""


class InvalidDomain(FocusdError):
    """User-entered website input could not be turned into a host."""


class ForegroundUnavailable(FocusdError):
    """No frontmost application could be determined."""


class TabQueryFailed(FocusdError):
    """The browser refused or failed to report its active tab."""


class TabQueryTimeout(TabQueryFailed):
    """The browser tab query did not answer in time."""


class PersistenceFailure(FocusdError):
    """A write to the session database failed."""


class SummaryProxyFailure(FocusdError):
    """The summary proxy returned an error or an unusable response."""


class SummaryTimeout(SummaryProxyFailure):
    """The summary job did not finish within the polling budget."""
