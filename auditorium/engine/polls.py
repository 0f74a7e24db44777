"""
auditorium.engine.polls — Poll Options and Result Projection
=============================================================

Poll options are a tagged, validated structure: an ordered list of
``{"option_id": str, "text": str}`` with 2–10 entries and unique ids.  Stored
payloads are validated on the way in, so readers never guess at shape.

Results are a projection over ``poll_responses``.  Two ways to build one:

* :func:`tally` — full recomputation from detail rows (repair path, snapshots).
* :func:`apply_response` — incremental update for one new response (hot path
  on the client).  A pure optimization: feeding every response through it
  yields exactly what :func:`tally` returns.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from auditorium.constants import MAX_POLL_OPTIONS, MIN_POLL_OPTIONS, percent
from auditorium.errors import InvalidInputError


@dataclass(frozen=True, slots=True)
class PollOption:
    option_id: str
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"option_id": self.option_id, "text": self.text}


@dataclass(frozen=True, slots=True)
class OptionResult:
    option_id: str
    text: str
    count: int = 0
    percentage: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "option_id": self.option_id,
            "text": self.text,
            "count": self.count,
            "percentage": self.percentage,
        }


@dataclass(frozen=True, slots=True)
class PollResults:
    poll_id: str
    total_responses: int
    options: tuple[OptionResult, ...]

    def count_for(self, option_id: str) -> int:
        for opt in self.options:
            if opt.option_id == option_id:
                return opt.count
        raise KeyError(option_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "total_responses": self.total_responses,
            "options": [o.to_dict() for o in self.options],
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def parse_options(raw: Any) -> list[PollOption]:
    """Validate a raw option payload and return typed options.

    Accepts ``option_id`` (or ``id``) and ``text`` per entry.

    Raises
    ------
    InvalidInputError
        If *raw* is not a list of 2–10 well-formed entries with unique ids.
    """
    if not isinstance(raw, list):
        raise InvalidInputError("Poll options must be a list")
    if not MIN_POLL_OPTIONS <= len(raw) <= MAX_POLL_OPTIONS:
        raise InvalidInputError(
            f"Polls need between {MIN_POLL_OPTIONS} and {MAX_POLL_OPTIONS} options"
        )

    options: list[PollOption] = []
    seen: set[str] = set()
    for entry in raw:
        if isinstance(entry, PollOption):
            option_id, text = entry.option_id, entry.text
        elif isinstance(entry, dict):
            option_id = entry.get("option_id", entry.get("id"))
            text = entry.get("text")
        else:
            raise InvalidInputError(f"Malformed poll option: {entry!r}")

        if not isinstance(option_id, str) or not option_id.strip():
            raise InvalidInputError(f"Poll option is missing an id: {entry!r}")
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError(f"Poll option '{option_id}' has no text")
        if option_id in seen:
            raise InvalidInputError(f"Duplicate poll option id: {option_id}")
        seen.add(option_id)
        options.append(PollOption(option_id=option_id, text=text.strip()))
    return options


def validate_selection(
    options: Sequence[PollOption],
    selected: Iterable[str],
    *,
    allow_multiple: bool,
) -> list[str]:
    """Check a vote against the poll's options; returns the de-duplicated ids.

    Single-choice polls take exactly one option, multi-choice polls at least
    one.
    """
    picked = list(dict.fromkeys(selected))
    if not picked:
        raise InvalidInputError("Select at least one option")
    if not allow_multiple and len(picked) != 1:
        raise InvalidInputError("This poll accepts a single option")
    known = {o.option_id for o in options}
    unknown = [o for o in picked if o not in known]
    if unknown:
        raise InvalidInputError(f"Unknown poll option(s): {', '.join(unknown)}")
    return picked


# ---------------------------------------------------------------------------
# Result projection
# ---------------------------------------------------------------------------
def _with_percentages(options: Iterable[OptionResult], total: int) -> tuple[OptionResult, ...]:
    return tuple(replace(o, percentage=percent(o.count, total)) for o in options)


def empty_results(poll_id: str, options: Sequence[PollOption]) -> PollResults:
    """Zero-response projection for a freshly inserted poll."""
    return PollResults(
        poll_id=poll_id,
        total_responses=0,
        options=tuple(OptionResult(option_id=o.option_id, text=o.text) for o in options),
    )


def tally(
    poll_id: str,
    options: Sequence[PollOption],
    responses: Iterable[Iterable[str]],
) -> PollResults:
    """Recompute results from every response's selected option ids."""
    counts = {o.option_id: 0 for o in options}
    total = 0
    for selected in responses:
        total += 1
        for option_id in set(selected):
            if option_id in counts:
                counts[option_id] += 1

    rows = (
        OptionResult(option_id=o.option_id, text=o.text, count=counts[o.option_id])
        for o in options
    )
    return PollResults(poll_id=poll_id, total_responses=total, options=_with_percentages(rows, total))


def apply_response(results: PollResults, selected: Iterable[str]) -> PollResults:
    """Fold one new response into *results*.

    ``total_responses`` grows by one, each selected option's count by one,
    then every percentage is recomputed as ``round(count / total * 100)``.
    """
    chosen = set(selected)
    total = results.total_responses + 1
    rows = (
        replace(o, count=o.count + 1) if o.option_id in chosen else o
        for o in results.options
    )
    return PollResults(
        poll_id=results.poll_id,
        total_responses=total,
        options=_with_percentages(rows, total),
    )
