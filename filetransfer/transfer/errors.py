"""
Transfer Errors

Transport faults subclass ConnectionError (and therefore OSError) so a
client attempt can treat every network or I/O failure the same way:
stop the attempt and resume from the last known offset.
"""


class TransferError(Exception):
    """Base class for all transfer errors."""


class TransportError(TransferError, ConnectionError):
    """Recoverable transport fault (reset, refused, closed mid-stream)."""


class FrameError(TransportError):
    """A frame was truncated or malformed."""


class TransportTimeout(TransportError):
    """A connect, read or drain did not finish in time."""


class ProtocolError(FrameError):
    """The peer sent a well-formed frame with an invalid value."""


class RetriesExhausted(TransferError):
    """A bounded retry policy gave up before the transfer finished."""

    def __init__(self, outcome, attempts: int):
        self.outcome = outcome
        self.attempts = attempts
        super().__init__(
            f"Gave up after {attempts} attempts "
            f"(last offset {outcome.offset}): {outcome.error}"
        )
