"""
auditorium.engine.features — Feature Gating by Webinar Status and Flags
========================================================================

Shared by the services (authoritative) and the client sync units (early
rejection before any network call).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from auditorium.database.models import WebinarStatus
from auditorium.errors import FeatureDisabledError


class Feature(enum.StrEnum):
    CHAT = "chat"
    QA = "qa"
    POLLS = "polls"
    REACTIONS = "reactions"


@dataclass(frozen=True, slots=True)
class WebinarContext:
    """The slice of a webinar the engagement core gates on."""

    webinar_id: str
    company_id: str
    status: str
    chat_enabled: bool = True
    qa_enabled: bool = True
    polls_enabled: bool = True
    reactions_enabled: bool = True
    replay_enabled: bool = False

    @classmethod
    def from_row(cls, webinar: Any) -> WebinarContext:
        return cls(
            webinar_id=webinar.id,
            company_id=webinar.company_id,
            status=webinar.status,
            chat_enabled=bool(webinar.chat_enabled),
            qa_enabled=bool(webinar.qa_enabled),
            polls_enabled=bool(webinar.polls_enabled),
            reactions_enabled=bool(webinar.reactions_enabled),
            replay_enabled=bool(webinar.replay_enabled),
        )

    def is_enabled(self, feature: Feature) -> bool:
        if self.status == WebinarStatus.CANCELLED:
            return False
        if feature is Feature.CHAT:
            return self.chat_enabled
        if feature is Feature.QA:
            return self.qa_enabled
        if feature is Feature.POLLS:
            return self.polls_enabled
        # Reactions only make sense over playing media: live, or a replay.
        return self.reactions_enabled and (
            self.status == WebinarStatus.LIVE
            or (self.status == WebinarStatus.ENDED and self.replay_enabled)
        )

    def require(self, feature: Feature) -> None:
        """Raise :class:`FeatureDisabledError` unless *feature* is on."""
        if not self.is_enabled(feature):
            raise FeatureDisabledError(
                f"{feature.capitalize()} is not available for this webinar"
            )
