"""
auditorium.client.results — Outcome of an Optimistic Mutation
==============================================================

Every user-initiated write in a sync unit returns a :class:`MutationResult`
instead of raising.  The unit has already applied (or rolled back) its local
state by the time the caller sees it.

=============  ==============================================================
status         meaning
=============  ==============================================================
``pending``    applied locally, server has not answered yet
``confirmed``  server accepted the write; local state stands
``duplicate``  a uniqueness rule says it was already done; treated as success
``failed``     rejected or undeliverable; local state rolled back
=============  ==============================================================
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from auditorium.errors import AuditoriumError


class MutationStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class MutationResult:
    status: MutationStatus
    applied_locally: bool
    value: Any = None
    error: AuditoriumError | None = None

    @property
    def ok(self) -> bool:
        """True when local state now reflects the write."""
        return self.status in (MutationStatus.CONFIRMED, MutationStatus.DUPLICATE)

    @property
    def error_message(self) -> str | None:
        return self.error.detail if self.error is not None else None

    @classmethod
    def pending(cls) -> MutationResult:
        return cls(MutationStatus.PENDING, applied_locally=True)

    @classmethod
    def confirmed(cls, value: Any = None) -> MutationResult:
        return cls(MutationStatus.CONFIRMED, applied_locally=True, value=value)

    @classmethod
    def duplicate(cls, error: AuditoriumError, *, applied_locally: bool = True) -> MutationResult:
        return cls(MutationStatus.DUPLICATE, applied_locally=applied_locally, error=error)

    @classmethod
    def failed(cls, error: AuditoriumError) -> MutationResult:
        return cls(MutationStatus.FAILED, applied_locally=False, error=error)
