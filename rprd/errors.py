"""Client-facing errors raised by command handling.

Every error here is recovered by the dispatcher and reported back to the
originating connection as an ERROR notification carrying ``text``.
"""

from __future__ import annotations


class RelayError(Exception):
    text = "error"

    def __init__(self, text: str | None = None) -> None:
        if text is not None:
            self.text = text
        super().__init__(self.text)


class InvalidInput(RelayError):
    text = "invalid input"


class NameConflict(RelayError):
    text = "name already taken"


class NotRegistered(RelayError):
    text = "not registered"


class SelfTarget(RelayError):
    text = "cannot message self"


class RecipientUnavailable(RelayError):
    text = "recipient not found or disconnected"


class UnrecognizedCommand(RelayError):
    text = "unrecognized command"


class DecodeFailure(RelayError):
    text = "bad message"
