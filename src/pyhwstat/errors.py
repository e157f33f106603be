"""Exceptions raised by pyhwstat engines."""


class HwStatError(Exception):
    """Base class for all pyhwstat errors."""


class ProcUnavailableError(HwStatError):
    """The process-information root is missing or unreadable."""


class CollectError(HwStatError):
    """A mandatory counter source could not be read for the current tick.

    Previous-sample state is left untouched, so the next call can retry.
    """

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason
