"""Error taxonomy shared by the domain and its adapters."""


class RealiBuddyError(Exception):
    """Base class for all service errors."""


class InvalidCommandError(RealiBuddyError, ValueError):
    """A client command was malformed or out of range.

    Rejected locally with an ``error`` notification; never mutates state.
    """


class CollaboratorError(RealiBuddyError, RuntimeError):
    """An external collaborator (STT, fact-check, actuation) failed or timed out."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage


class LedgerError(RealiBuddyError, RuntimeError):
    """A durable read or write against the claim ledger failed."""


class GovernorFaultError(RealiBuddyError, RuntimeError):
    """The safety governor can no longer vouch for its rate-limit state.

    Once raised, the governor denies every actuation until the process restarts.
    ``delivered`` tells callers whether a stimulus reached the device before
    the fault (the ledger write that follows a delivery can still fail).
    """

    def __init__(self, message: str, delivered: bool = False):
        super().__init__(message)
        self.delivered = delivered
