"""
Error taxonomy for the registry engine.

Every failure surfaced by the engine carries a ``kind`` so the API layer
can map it to a response without inspecting messages.
"""

from typing import Optional


class RegistryError(Exception):
    """Base class for registry failures."""

    kind = "unexpected"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(RegistryError):
    """A referenced person, commune or act does not exist."""

    kind = "not_found"


class DuplicateError(RegistryError):
    """Act number collision, or the subject already has an act."""

    kind = "duplicate"


class InvalidActError(RegistryError):
    """Date coherence, format or plausibility check failed."""

    kind = "invalid"


class UnexpectedError(RegistryError):
    """Store or infrastructure failure."""

    kind = "unexpected"


class InvalidQueryError(InvalidActError):
    """Paging or sort parameters rejected by the query composer."""

    pass


class BatchRejectedError(RegistryError):
    """A batch failed the structural pre-check; no item was attempted."""

    def __init__(self, message: str, kind: str = "invalid", act_numbers: Optional[list[str]] = None):
        super().__init__(message)
        self.kind = kind
        self.act_numbers = act_numbers or []


# Shared by the application pre-checks and the store constraint mapping
ACT_NUMBER_EXISTS = "An act with this number already exists"
SUBJECT_HAS_ACT = "This person already has an act of this kind"
