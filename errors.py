"""
Exceptions raised by the core.

Game-rule refusals (not enough energy, free revival spent, quiz still locked)
are not exceptions; they come back as ``schemas.Outcome`` with a ``Rejection``.
"""


class CoreError(Exception):
    """Base class for errors surfaced to the caller."""


class ValidationError(CoreError):
    """Malformed input. Nothing was mutated."""


class NotFound(CoreError):
    """Unknown pet, module, lesson or game."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class AdapterFailure(CoreError):
    """A storage or chain collaborator failed."""
