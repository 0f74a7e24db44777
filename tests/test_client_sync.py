"""
tests/test_client_sync.py — Sync-Unit Merge Rules and Optimistic Writes
========================================================================

Drives the client sync units directly: change frames are handed to the
unit's frame handler, writes go to an AsyncMock writer.  The connection is
never opened, so nothing leaves the process.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from auditorium.client.chat import ChatSync
from auditorium.client.connection import RealtimeConnection
from auditorium.client.polls import PollSync
from auditorium.client.qa import QASync
from auditorium.client.reactions import ReactionSync
from auditorium.client.results import MutationStatus
from auditorium.engine.features import WebinarContext
from auditorium.errors import (
    DuplicateUpvoteError,
    DuplicateVoteError,
    FeatureDisabledError,
    InvalidInputError,
    WriteFailedError,
)
from auditorium.realtime.messages import ChangeEvent, Operation, ServerEvent, frame

WEBINAR = "w1"
ME = "r-me"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

OPTIONS = [{"option_id": "a", "text": "Yes"}, {"option_id": "b", "text": "No"}]


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _context(**overrides) -> WebinarContext:
    values = {"webinar_id": WEBINAR, "company_id": "c1", "status": "live", "replay_enabled": True}
    values.update(overrides)
    return WebinarContext(**values)


def _writer() -> MagicMock:
    writer = MagicMock()
    writer.webinar_id = WEBINAR
    writer.registration_id = ME
    return writer


def _connection() -> RealtimeConnection:
    def _never():
        raise AssertionError("transport should not be used")

    return RealtimeConnection(_never, heartbeat_interval=0)


def change(op: str, table: str, record: dict) -> dict:
    event = ChangeEvent(Operation(op), table, WEBINAR, record)
    return frame(event.topic, ServerEvent.CHANGE, event.to_dict())


def chat_record(message_id: str, text: str = "hi", **flags) -> dict:
    return {
        "id": message_id,
        "webinar_id": WEBINAR,
        "registration_id": "r-other",
        "message": text,
        "created_at": T0.isoformat(),
        "is_pinned": False,
        "is_hidden": False,
        **flags,
    }


def question_record(question_id: str, upvotes: int = 0, minutes: int = 0, **extra) -> dict:
    return {
        "id": question_id,
        "webinar_id": WEBINAR,
        "registration_id": "r-other",
        "question": f"Question {question_id}",
        "status": "open",
        "upvote_count": upvotes,
        "is_hidden": False,
        "created_at": (T0 + timedelta(minutes=minutes)).isoformat(),
        **extra,
    }


def poll_record(poll_id: str, status: str = "active", activated: datetime | None = T0, **extra) -> dict:
    return {
        "id": poll_id,
        "webinar_id": WEBINAR,
        "question": "Ship it?",
        "options": OPTIONS,
        "status": status,
        "allow_multiple": False,
        "show_results_live": True,
        "activated_at": activated.isoformat() if activated else None,
        "closed_at": None,
        "created_at": T0.isoformat(),
        **extra,
    }


def response_record(response_id: str, poll_id: str, selected: list[str], registration_id: str = "r-x") -> dict:
    return {
        "id": response_id,
        "poll_id": poll_id,
        "registration_id": registration_id,
        "selected_options": selected,
        "created_at": T0.isoformat(),
    }


def reaction_record(reaction_id: str, emoji: str = "🔥") -> dict:
    return {
        "id": reaction_id,
        "webinar_id": WEBINAR,
        "registration_id": "r-other",
        "emoji": emoji,
        "created_at": T0.isoformat(),
    }


async def _mounted(unit, snapshot=None):
    await unit.mount(snapshot)
    return unit


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------
class TestChatMerge:
    def test_duplicate_insert_delivery_keeps_one_entry(self):
        async def _run():
            chat = await _mounted(ChatSync(_connection(), _writer(), _context()))
            message = change("insert", "chat_messages", chat_record("m1"))
            chat._on_frame(message)
            chat._on_frame(message)
            return chat

        chat = run_async(_run())
        assert [m.id for m in chat.messages] == ["m1"]

    def test_update_for_unknown_id_is_ignored(self):
        async def _run():
            chat = await _mounted(ChatSync(_connection(), _writer(), _context()))
            chat._on_frame(change("update", "chat_messages", chat_record("ghost", is_pinned=True)))
            chat._on_frame(change("delete", "chat_messages", {"id": "nobody"}))
            return chat

        chat = run_async(_run())
        assert chat.messages == []

    def test_hide_pin_delete(self):
        async def _run():
            chat = await _mounted(
                ChatSync(_connection(), _writer(), _context()),
                [chat_record("m1"), chat_record("m2")],
            )
            chat._on_frame(change("update", "chat_messages", chat_record("m1", is_pinned=True)))
            chat._on_frame(change("update", "chat_messages", chat_record("m2", is_hidden=True)))
            pinned = [m.id for m in chat.pinned]
            visible = [m.id for m in chat.messages]
            chat._on_frame(change("delete", "chat_messages", {"id": "m1"}))
            return pinned, visible, chat

        pinned, visible, chat = run_async(_run())
        assert pinned == ["m1"]
        assert visible == ["m1"]
        assert chat.messages == []

    def test_other_tables_and_events_are_ignored(self):
        async def _run():
            chat = await _mounted(ChatSync(_connection(), _writer(), _context()))
            chat._on_frame(change("insert", "qa_questions", question_record("q1")))
            chat._on_frame({"topic": "webinar:w1", "event": "subscribed", "payload": {}})
            chat._on_frame({"topic": "webinar:w1", "event": "change", "payload": {"bogus": 1}})
            return chat

        assert run_async(_run()).messages == []

    def test_events_after_unmount_are_discarded(self):
        async def _run():
            chat = await _mounted(ChatSync(_connection(), _writer(), _context()))
            await chat.unmount()
            chat._on_frame(change("insert", "chat_messages", chat_record("late")))
            return chat

        assert run_async(_run()).get("late") is None


class TestChatWrites:
    def test_optimistic_entry_is_confirmed_and_echo_collapses(self):
        writer = _writer()
        writer.send_chat_message = AsyncMock(side_effect=lambda mid, body: {
            **chat_record(mid, body), "registration_id": ME,
        })

        async def _run():
            chat = await _mounted(ChatSync(_connection(), writer, _context()))
            result = await chat.send("  hello  ")
            sent_id = writer.send_chat_message.await_args.args[0]
            chat._on_frame(change("insert", "chat_messages", {
                **chat_record(sent_id, "hello"), "registration_id": ME,
            }))
            return result, chat

        result, chat = run_async(_run())
        assert result.status is MutationStatus.CONFIRMED
        assert result.ok and result.applied_locally
        assert [m.message for m in chat.messages] == ["hello"]
        assert chat.in_flight == {}

    def test_failed_write_rolls_back(self):
        writer = _writer()
        writer.send_chat_message = AsyncMock(side_effect=WriteFailedError("server down"))

        async def _run():
            chat = await _mounted(ChatSync(_connection(), writer, _context()))
            return await chat.send("hello"), chat

        result, chat = run_async(_run())
        assert result.status is MutationStatus.FAILED
        assert not result.applied_locally
        assert result.error_message == "server down"
        assert chat.messages == []

    def test_unexpected_exception_is_a_failed_write(self):
        writer = _writer()
        writer.send_chat_message = AsyncMock(side_effect=ConnectionResetError("reset"))

        async def _run():
            chat = await _mounted(ChatSync(_connection(), writer, _context()))
            return await chat.send("hello"), chat

        result, chat = run_async(_run())
        assert result.status is MutationStatus.FAILED
        assert isinstance(result.error, WriteFailedError)
        assert chat.messages == []

    def test_disabled_chat_never_calls_the_writer(self):
        writer = _writer()
        writer.send_chat_message = AsyncMock()

        async def _run():
            chat = await _mounted(ChatSync(_connection(), writer, _context(chat_enabled=False)))
            return await chat.send("hello")

        result = run_async(_run())
        assert isinstance(result.error, FeatureDisabledError)
        writer.send_chat_message.assert_not_awaited()

    def test_too_long_message_rejected_locally(self):
        writer = _writer()
        writer.send_chat_message = AsyncMock()

        async def _run():
            chat = await _mounted(ChatSync(_connection(), writer, _context(), max_length=5))
            return await chat.send("toolong")

        result = run_async(_run())
        assert isinstance(result.error, InvalidInputError)
        writer.send_chat_message.assert_not_awaited()


# ---------------------------------------------------------------------------
# Q&A
# ---------------------------------------------------------------------------
class TestQAMerge:
    def test_sorted_by_upvotes_then_age(self):
        async def _run():
            qa = await _mounted(QASync(_connection(), _writer(), _context()), {
                "questions": [
                    question_record("old", upvotes=1, minutes=0),
                    question_record("new", upvotes=1, minutes=5),
                    question_record("top", upvotes=3, minutes=9),
                ],
                "upvoted_ids": ["top"],
            })
            return qa

        qa = run_async(_run())
        assert [q.id for q in qa.questions] == ["top", "old", "new"]
        assert qa.get("top").has_upvoted is True

    def test_update_keeps_my_upvote_flag_and_resorts(self):
        async def _run():
            qa = await _mounted(QASync(_connection(), _writer(), _context()), {
                "questions": [question_record("a", upvotes=2), question_record("b", minutes=1)],
                "upvoted_ids": ["b"],
            })
            qa._on_frame(change("update", "qa_questions", question_record("b", upvotes=5, minutes=1)))
            return qa

        qa = run_async(_run())
        assert [q.id for q in qa.questions] == ["b", "a"]
        assert qa.get("b").has_upvoted is True

    def test_hidden_questions_drop_out(self):
        async def _run():
            qa = await _mounted(QASync(_connection(), _writer(), _context()),
                                {"questions": [question_record("a")]})
            qa._on_frame(change("update", "qa_questions", question_record("a", is_hidden=True)))
            return qa

        assert run_async(_run()).questions == []


class TestUpvoteToggle:
    def test_upvote_adopts_server_count(self):
        writer = _writer()
        writer.add_upvote = AsyncMock(return_value=4)

        async def _run():
            qa = await _mounted(QASync(_connection(), writer, _context()),
                                {"questions": [question_record("q", upvotes=2)]})
            return await qa.toggle_upvote("q"), qa

        result, qa = run_async(_run())
        assert result.status is MutationStatus.CONFIRMED
        assert qa.get("q").upvote_count == 4
        assert qa.get("q").has_upvoted is True

    def test_withdraw(self):
        writer = _writer()
        writer.remove_upvote = AsyncMock(return_value=0)

        async def _run():
            qa = await _mounted(QASync(_connection(), writer, _context()),
                                {"questions": [question_record("q", upvotes=1)], "upvoted_ids": ["q"]})
            return await qa.toggle_upvote("q"), qa

        result, qa = run_async(_run())
        assert result.ok
        assert qa.get("q").has_upvoted is False
        assert qa.get("q").upvote_count == 0
        writer.remove_upvote.assert_awaited_once_with("q")

    def test_failure_restores_flag_and_count(self):
        writer = _writer()
        writer.add_upvote = AsyncMock(side_effect=WriteFailedError("offline"))

        async def _run():
            qa = await _mounted(QASync(_connection(), writer, _context()),
                                {"questions": [question_record("q", upvotes=2)]})
            return await qa.toggle_upvote("q"), qa

        result, qa = run_async(_run())
        assert result.status is MutationStatus.FAILED
        assert qa.get("q").has_upvoted is False
        assert qa.get("q").upvote_count == 2

    def test_failed_withdraw_at_zero_restores_zero(self):
        """Local count already 0: the withdraw shows 0 and the rollback lands back on 0."""
        writer = _writer()
        release = asyncio.Event()

        async def _offline(_qid):
            await release.wait()
            raise WriteFailedError("offline")

        writer.remove_upvote = AsyncMock(side_effect=_offline)

        async def _run():
            qa = await _mounted(QASync(_connection(), writer, _context()),
                                {"questions": [question_record("q", upvotes=0)], "upvoted_ids": ["q"]})
            task = asyncio.ensure_future(qa.toggle_upvote("q"))
            await asyncio.sleep(0)
            during = qa.get("q").upvote_count
            release.set()
            return during, await task, qa

        during, result, qa = run_async(_run())
        assert during == 0
        assert result.status is MutationStatus.FAILED
        assert qa.get("q").has_upvoted is True
        assert qa.get("q").upvote_count == 0

    def test_duplicate_upvote_counts_as_done(self):
        """Server already has the upvote: flag stays on, the count is not bumped."""
        writer = _writer()
        writer.add_upvote = AsyncMock(side_effect=DuplicateUpvoteError("already"))

        async def _run():
            qa = await _mounted(QASync(_connection(), writer, _context()),
                                {"questions": [question_record("q", upvotes=3)]})
            return await qa.toggle_upvote("q"), qa

        result, qa = run_async(_run())
        assert result.status is MutationStatus.DUPLICATE
        assert result.ok
        assert qa.get("q").has_upvoted is True
        assert qa.get("q").upvote_count == 3

    def test_second_toggle_while_in_flight_is_pending(self):
        writer = _writer()
        release = asyncio.Event()

        async def _slow(_qid):
            await release.wait()
            return 1

        writer.add_upvote = AsyncMock(side_effect=_slow)

        async def _run():
            qa = await _mounted(QASync(_connection(), writer, _context()),
                                {"questions": [question_record("q")]})
            first = asyncio.ensure_future(qa.toggle_upvote("q"))
            await asyncio.sleep(0)
            second = await qa.toggle_upvote("q")
            release.set()
            return await first, second

        first, second = run_async(_run())
        assert first.status is MutationStatus.CONFIRMED
        assert second.status is MutationStatus.PENDING
        assert writer.add_upvote.await_count == 1

    def test_unknown_question(self):
        async def _run():
            qa = await _mounted(QASync(_connection(), _writer(), _context()))
            return await qa.toggle_upvote("nope")

        assert run_async(_run()).status is MutationStatus.FAILED


# ---------------------------------------------------------------------------
# Polls
# ---------------------------------------------------------------------------
class TestPollMerge:
    def test_latest_activation_wins(self):
        async def _run():
            return await _mounted(PollSync(_connection(), _writer(), _context()), {
                "polls": [
                    poll_record("early", activated=T0),
                    poll_record("late", activated=T0 + timedelta(seconds=5)),
                ],
            })

        assert run_async(_run()).active_poll.id == "late"

    def test_tie_goes_to_the_last_observed_activation(self):
        async def _run():
            polls = await _mounted(PollSync(_connection(), _writer(), _context()))
            polls._on_frame(change("insert", "polls", poll_record("p1", status="draft", activated=None)))
            polls._on_frame(change("insert", "polls", poll_record("p2", status="draft", activated=None)))
            polls._on_frame(change("update", "polls", poll_record("p2", activated=T0)))
            polls._on_frame(change("update", "polls", poll_record("p1", activated=T0)))
            return polls

        assert run_async(_run()).active_poll.id == "p1"

    def test_no_active_poll(self):
        async def _run():
            return await _mounted(PollSync(_connection(), _writer(), _context()),
                                  {"polls": [poll_record("p", status="closed")]})

        assert run_async(_run()).active_poll is None

    def test_activation_of_unseen_poll_is_adopted(self):
        async def _run():
            polls = await _mounted(PollSync(_connection(), _writer(), _context()), {"polls": []})
            polls._on_frame(change("update", "polls", poll_record("hidden-draft")))
            return polls

        polls = run_async(_run())
        assert polls.active_poll.id == "hidden-draft"
        assert polls.results_for("hidden-draft").total_responses == 0

    def test_responses_fold_in_once(self):
        async def _run():
            polls = await _mounted(PollSync(_connection(), _writer(), _context()),
                                   {"polls": [poll_record("p")]})
            vote = change("insert", "poll_responses", response_record("v1", "p", ["a"]))
            polls._on_frame(vote)
            polls._on_frame(vote)
            polls._on_frame(change("insert", "poll_responses", response_record("v2", "p", ["b"])))
            polls._on_frame(change("insert", "poll_responses", response_record("v3", "p", ["a"])))
            return polls

        results = run_async(_run()).results_for("p")
        assert results.total_responses == 3
        assert [(o.count, o.percentage) for o in results.options] == [(2, 67), (1, 33)]

    def test_poll_update_keeps_live_results(self):
        async def _run():
            polls = await _mounted(PollSync(_connection(), _writer(), _context()),
                                   {"polls": [poll_record("p")]})
            polls._on_frame(change("insert", "poll_responses", response_record("v1", "p", ["a"])))
            polls._on_frame(change("update", "polls", poll_record("p", status="closed")))
            return polls

        polls = run_async(_run())
        assert polls.get("p").status == "closed"
        assert polls.results_for("p").total_responses == 1

    def test_own_response_marks_voted(self):
        async def _run():
            polls = await _mounted(PollSync(_connection(), _writer(), _context()),
                                   {"polls": [poll_record("p")]})
            polls._on_frame(change("insert", "poll_responses", response_record("v1", "p", ["b"], ME)))
            return polls

        polls = run_async(_run())
        assert polls.has_voted("p")
        assert polls.my_votes["p"] == ("b",)


class TestPollVote:
    def test_vote_records_choice_but_not_counts(self):
        writer = _writer()
        writer.submit_poll_response = AsyncMock(return_value={"id": "v"})

        async def _run():
            polls = await _mounted(PollSync(_connection(), writer, _context()),
                                   {"polls": [poll_record("p")]})
            return await polls.vote("p", ["a"]), polls

        result, polls = run_async(_run())
        assert result.status is MutationStatus.CONFIRMED
        assert polls.my_votes["p"] == ("a",)
        assert polls.results_for("p").total_responses == 0

    def test_second_vote_short_circuits(self):
        writer = _writer()
        writer.submit_poll_response = AsyncMock()

        async def _run():
            polls = await _mounted(PollSync(_connection(), writer, _context()),
                                   {"polls": [poll_record("p")], "my_votes": {"p": ["a"]}})
            return await polls.vote("p", ["b"])

        result = run_async(_run())
        assert result.status is MutationStatus.DUPLICATE
        assert result.applied_locally is False
        writer.submit_poll_response.assert_not_awaited()

    def test_server_duplicate_keeps_the_choice(self):
        writer = _writer()
        writer.submit_poll_response = AsyncMock(side_effect=DuplicateVoteError("already"))

        async def _run():
            polls = await _mounted(PollSync(_connection(), writer, _context()),
                                   {"polls": [poll_record("p")]})
            return await polls.vote("p", ["a"]), polls

        result, polls = run_async(_run())
        assert result.status is MutationStatus.DUPLICATE
        assert polls.has_voted("p")

    def test_failure_clears_the_choice(self):
        writer = _writer()
        writer.submit_poll_response = AsyncMock(side_effect=WriteFailedError("nope"))

        async def _run():
            polls = await _mounted(PollSync(_connection(), writer, _context()),
                                   {"polls": [poll_record("p")]})
            return await polls.vote("p", ["a"]), polls

        result, polls = run_async(_run())
        assert result.status is MutationStatus.FAILED
        assert not polls.has_voted("p")

    @pytest.mark.parametrize(
        "poll_id, options, status",
        [
            ("missing", ["a"], "active"),
            ("p", ["a"], "closed"),
            ("p", ["a", "b"], "active"),
            ("p", ["zzz"], "active"),
        ],
    )
    def test_rejected_locally(self, poll_id, options, status):
        writer = _writer()
        writer.submit_poll_response = AsyncMock()

        async def _run():
            polls = await _mounted(PollSync(_connection(), writer, _context()),
                                   {"polls": [poll_record("p", status=status)]})
            return await polls.vote(poll_id, options)

        assert run_async(_run()).status is MutationStatus.FAILED
        writer.submit_poll_response.assert_not_awaited()


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------
class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestReactions:
    def test_capacity_evicts_oldest(self):
        async def _run():
            reactions = await _mounted(
                ReactionSync(_connection(), _writer(), _context(), capacity=2, lifetime=60),
            )
            for rid in ("x1", "x2", "x3"):
                reactions._on_frame(change("insert", "reactions", reaction_record(rid)))
            floating = [r.id for r in reactions.floating]
            await reactions.unmount()
            return floating, reactions

        floating, reactions = run_async(_run())
        assert floating == ["x2", "x3"]
        assert reactions.counts["🔥"] == 3

    def test_duplicate_delivery_counted_once(self):
        async def _run():
            reactions = await _mounted(ReactionSync(_connection(), _writer(), _context(), lifetime=60))
            message = change("insert", "reactions", reaction_record("x1", "👏"))
            reactions._on_frame(message)
            reactions._on_frame(message)
            count = reactions.counts["👏"]
            await reactions.unmount()
            return count

        assert run_async(_run()) == 1

    def test_reactions_expire(self):
        async def _run():
            reactions = await _mounted(
                ReactionSync(_connection(), _writer(), _context(), lifetime=0.01),
            )
            reactions._on_frame(change("insert", "reactions", reaction_record("x1")))
            before = len(reactions.floating)
            await asyncio.sleep(0.05)
            return before, reactions.floating

        before, after = run_async(_run())
        assert before == 1
        assert after == []

    def test_debounce(self):
        writer = _writer()
        writer.send_reaction = AsyncMock(side_effect=lambda rid, emoji: reaction_record(rid, emoji))
        clock = FakeClock()

        async def _run():
            reactions = await _mounted(
                ReactionSync(_connection(), writer, _context(), clock=clock, lifetime=60),
            )
            first = await reactions.react("🔥")
            clock.now += 0.1
            second = await reactions.react("🔥")
            clock.now += 0.2
            third = await reactions.react("🔥")
            await reactions.unmount()
            return first, second, third

        first, second, third = run_async(_run())
        assert first.ok
        assert second.status is MutationStatus.FAILED
        assert second.error.code == "debounced"
        assert third.ok
        assert writer.send_reaction.await_count == 2

    def test_failed_reaction_is_retracted(self):
        writer = _writer()
        writer.send_reaction = AsyncMock(side_effect=WriteFailedError("down"))

        async def _run():
            reactions = await _mounted(ReactionSync(_connection(), writer, _context(), lifetime=60))
            result = await reactions.react("🎉")
            return result, reactions.floating, reactions.counts["🎉"]

        result, floating, count = run_async(_run())
        assert result.status is MutationStatus.FAILED
        assert floating == []
        assert count == 0

    def test_unknown_emoji_and_disabled_feature(self):
        writer = _writer()
        writer.send_reaction = AsyncMock()

        async def _run():
            on = await _mounted(ReactionSync(_connection(), writer, _context()))
            off = await _mounted(ReactionSync(
                _connection(), writer, _context(status="ended", replay_enabled=False),
            ))
            return await on.react("🦄"), await off.react("🔥")

        unknown, disabled = run_async(_run())
        assert isinstance(unknown.error, InvalidInputError)
        assert isinstance(disabled.error, FeatureDisabledError)
        writer.send_reaction.assert_not_awaited()
