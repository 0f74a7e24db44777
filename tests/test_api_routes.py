"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Attendee writes, host moderation, reports, weight tables and the realtime
WebSocket, through the FastAPI TestClient against an in-memory runtime.

These tests verify:
- Auth guards (401 without a token, 403 across webinars and companies)
- Error mapping (constraint violations come back as 409 with a code)
- Basic response structure of every router
"""

from __future__ import annotations

import pytest
from starlette.websockets import WebSocketDisconnect

from conftest import make_attendee_token, make_host_token

OPTIONS = [{"option_id": "a", "text": "Yes"}, {"option_id": "b", "text": "No"}]


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def attendee(attendee_token) -> dict:
    return _auth(attendee_token)


@pytest.fixture
def host(host_token) -> dict:
    return _auth(host_token)


# ===========================================================================
# Health and identity
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_realtime_health_in_process(self, client):
        resp = client.get("/api/health/realtime")
        assert resp.status_code == 200
        assert resp.json()["backend"] == "memory"
        assert resp.json()["listener_healthy"] is None


class TestAuthGuards:
    def test_me_echoes_claims(self, client, attendee, webinar_id, registration_id):
        resp = client.get("/api/auth/me", headers=attendee)
        assert resp.status_code == 200
        assert resp.json()["webinar_id"] == webinar_id
        assert resp.json()["registration_id"] == registration_id

    def test_missing_token(self, client, webinar_id):
        resp = client.post(f"/api/webinars/{webinar_id}/chat", json={"message": "hi"})
        assert resp.status_code == 401

    def test_garbage_token(self, client, webinar_id):
        resp = client.get(f"/api/webinars/{webinar_id}/chat", headers=_auth("not.a.jwt"))
        assert resp.status_code == 401

    def test_token_for_another_webinar(self, client, registration_id):
        token = make_attendee_token("other-webinar", registration_id)
        resp = client.get("/api/webinars/some-webinar/chat", headers=_auth(token))
        assert resp.status_code == 403

    def test_host_cannot_post_as_attendee(self, client, host, webinar_id):
        resp = client.post(f"/api/webinars/{webinar_id}/chat", headers=host, json={"message": "hi"})
        assert resp.status_code == 403

    def test_attendee_cannot_moderate(self, client, attendee, webinar_id):
        resp = client.post(
            f"/api/webinars/{webinar_id}/polls", headers=attendee,
            json={"question": "Q?", "options": OPTIONS},
        )
        assert resp.status_code == 403

    def test_host_of_another_company(self, client, webinar_id):
        token = make_host_token(company_id="company-2")
        resp = client.get(f"/api/reports/webinars/{webinar_id}/engagement", headers=_auth(token))
        assert resp.status_code == 403


# ===========================================================================
# Attendee interactions
# ===========================================================================
class TestChatRoutes:
    def test_send_and_list(self, client, attendee, webinar_id):
        resp = client.post(f"/api/webinars/{webinar_id}/chat", headers=attendee, json={"message": "  hi  "})
        assert resp.status_code == 201
        assert resp.json()["message"] == "hi"

        listed = client.get(f"/api/webinars/{webinar_id}/chat", headers=attendee)
        assert [m["message"] for m in listed.json()] == ["hi"]

    def test_blank_message_is_422(self, client, attendee, webinar_id):
        resp = client.post(f"/api/webinars/{webinar_id}/chat", headers=attendee, json={"message": "   "})
        assert resp.status_code == 422

    def test_host_pins_and_hides(self, client, attendee, host, webinar_id):
        msg = client.post(f"/api/webinars/{webinar_id}/chat", headers=attendee, json={"message": "hi"}).json()

        pinned = client.post(
            f"/api/webinars/{webinar_id}/chat/{msg['id']}/pin", headers=host, json={"pinned": True},
        )
        assert pinned.status_code == 200
        assert pinned.json()["is_pinned"] is True
        assert len(client.get(f"/api/webinars/{webinar_id}/chat/pinned", headers=attendee).json()) == 1

        client.post(f"/api/webinars/{webinar_id}/chat/{msg['id']}/hide", headers=host, json={"hidden": True})
        assert client.get(f"/api/webinars/{webinar_id}/chat", headers=attendee).json() == []
        moderator_view = client.get(f"/api/webinars/{webinar_id}/chat/all", headers=host).json()
        assert [m["id"] for m in moderator_view] == [msg["id"]]

        deleted = client.delete(f"/api/webinars/{webinar_id}/chat/{msg['id']}", headers=host)
        assert deleted.status_code == 204


class TestQuestionRoutes:
    def test_upvote_flow(self, client, attendee, webinar_id):
        q = client.post(
            f"/api/webinars/{webinar_id}/questions", headers=attendee, json={"question": "Roadmap?"},
        ).json()
        url = f"/api/webinars/{webinar_id}/questions/{q['id']}/upvote"

        first = client.post(url, headers=attendee)
        assert first.json() == {"question_id": q["id"], "upvote_count": 1}

        again = client.post(url, headers=attendee)
        assert again.status_code == 409
        assert again.json()["code"] == "already_upvoted"

        removed = client.delete(url, headers=attendee)
        assert removed.json()["upvote_count"] == 0

        missing = client.delete(url, headers=attendee)
        assert missing.status_code == 409
        assert missing.json()["code"] == "not_upvoted"

    def test_list_marks_own_upvotes(self, client, attendee, webinar_id):
        q = client.post(
            f"/api/webinars/{webinar_id}/questions", headers=attendee, json={"question": "Pricing?"},
        ).json()
        client.post(f"/api/webinars/{webinar_id}/questions/{q['id']}/upvote", headers=attendee)
        listed = client.get(f"/api/webinars/{webinar_id}/questions", headers=attendee).json()
        assert listed["questions"][0]["upvote_count"] == 1
        assert listed["upvoted_ids"] == [q["id"]]

    def test_host_answers(self, client, attendee, host, webinar_id):
        q = client.post(
            f"/api/webinars/{webinar_id}/questions", headers=attendee, json={"question": "When?"},
        ).json()
        resp = client.post(
            f"/api/webinars/{webinar_id}/questions/{q['id']}/answer", headers=host, json={"answer": "Soon"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "answered"

    def test_unknown_question_is_404(self, client, attendee, webinar_id):
        resp = client.post(f"/api/webinars/{webinar_id}/questions/nope/upvote", headers=attendee)
        assert resp.status_code == 404


class TestPollRoutes:
    def _active_poll(self, client, host, webinar_id) -> str:
        poll = client.post(
            f"/api/webinars/{webinar_id}/polls", headers=host,
            json={"question": "Ship it?", "options": OPTIONS},
        )
        assert poll.status_code == 201
        poll_id = poll.json()["id"]
        activated = client.post(f"/api/webinars/{webinar_id}/polls/{poll_id}/activate", headers=host)
        assert activated.status_code == 200
        return poll_id

    def test_vote_once(self, client, attendee, host, webinar_id):
        poll_id = self._active_poll(client, host, webinar_id)
        url = f"/api/webinars/{webinar_id}/polls/{poll_id}/responses"

        first = client.post(url, headers=attendee, json={"option_ids": ["a"]})
        assert first.status_code == 201

        again = client.post(url, headers=attendee, json={"option_ids": ["b"]})
        assert again.status_code == 409
        assert again.json()["code"] == "already_voted"

        results = client.get(f"/api/webinars/{webinar_id}/polls/{poll_id}/results", headers=host).json()
        assert results["total_responses"] == 1

    def test_unknown_option_is_422(self, client, attendee, host, webinar_id):
        poll_id = self._active_poll(client, host, webinar_id)
        resp = client.post(
            f"/api/webinars/{webinar_id}/polls/{poll_id}/responses",
            headers=attendee, json={"option_ids": ["zzz"]},
        )
        assert resp.status_code == 422

    def test_drafts_visible_to_hosts_only(self, client, attendee, host, webinar_id):
        client.post(
            f"/api/webinars/{webinar_id}/polls", headers=host,
            json={"question": "Draft?", "options": OPTIONS},
        )
        assert client.get(f"/api/webinars/{webinar_id}/polls", headers=attendee).json()["polls"] == []
        assert len(client.get(f"/api/webinars/{webinar_id}/polls", headers=host).json()["polls"]) == 1

    def test_reconcile(self, client, host, webinar_id):
        self._active_poll(client, host, webinar_id)
        resp = client.post(f"/api/webinars/{webinar_id}/reconcile", headers=host)
        assert resp.status_code == 200
        assert len(resp.json()["polls"]) == 1


class TestReactionAndCtaRoutes:
    def test_reaction(self, client, attendee, host, webinar_id):
        resp = client.post(f"/api/webinars/{webinar_id}/reactions", headers=attendee, json={"emoji": "🔥"})
        assert resp.status_code == 201
        counts = client.get(f"/api/reports/webinars/{webinar_id}/reactions", headers=host).json()
        assert counts["🔥"] == 1

    def test_unknown_emoji_is_422(self, client, attendee, webinar_id):
        resp = client.post(f"/api/webinars/{webinar_id}/reactions", headers=attendee, json={"emoji": "🦄"})
        assert resp.status_code == 422

    def test_cta_click_dedupes_on_click_id(self, client, attendee, webinar_id):
        url = f"/api/webinars/{webinar_id}/cta-clicks"
        first = client.post(url, headers=attendee, json={"cta": "book-demo", "click_id": "c1"})
        again = client.post(url, headers=attendee, json={"cta": "book-demo", "click_id": "c1"})
        assert first.json() == {"recorded": True, "points_awarded": 5}
        assert again.json()["recorded"] is False


class TestWatchRoutes:
    def test_session_lifecycle(self, client, attendee, webinar_id):
        base = f"/api/webinars/{webinar_id}/watch-sessions"
        started = client.post(base, headers=attendee)
        assert started.status_code == 201
        session_id = started.json()["session_id"]

        progress = client.post(
            f"{base}/{session_id}/progress", headers=attendee,
            json={"position_seconds": 60, "duration_seconds": 120},
        )
        assert progress.json() == {"session_id": session_id, "new_milestones": [25, 50]}

        ended = client.post(f"{base}/{session_id}/end", headers=attendee)
        assert ended.status_code == 200
        assert ended.json()["ended"] is True
        assert ended.json()["last_position_seconds"] == 60

    def test_negative_position_is_422(self, client, attendee, webinar_id):
        base = f"/api/webinars/{webinar_id}/watch-sessions"
        session_id = client.post(base, headers=attendee).json()["session_id"]
        resp = client.post(
            f"{base}/{session_id}/progress", headers=attendee,
            json={"position_seconds": -1, "duration_seconds": 120},
        )
        assert resp.status_code == 422


# ===========================================================================
# Reports and weights
# ===========================================================================
class TestReportRoutes:
    def test_leaderboard_and_csv(self, client, attendee, host, webinar_id):
        client.post(f"/api/webinars/{webinar_id}/chat", headers=attendee, json={"message": "hi"})

        board = client.get(f"/api/reports/webinars/{webinar_id}/leaderboard", headers=host).json()
        assert [(e["rank"], e["name"], e["total_points"]) for e in board] == [(1, "Ada", 1)]

        csv_resp = client.get(f"/api/reports/webinars/{webinar_id}/leaderboard.csv", headers=host)
        assert csv_resp.status_code == 200
        assert csv_resp.headers["content-type"].startswith("text/csv")
        assert "Ada" in csv_resp.text

    def test_summary_and_distribution(self, client, host, webinar_id, registration_id):
        summary = client.get(f"/api/reports/webinars/{webinar_id}/summary", headers=host).json()
        assert summary["registrant_count"] == 1
        assert summary["top_scorers"] == []

        buckets = client.get(f"/api/reports/webinars/{webinar_id}/distribution", headers=host).json()
        assert buckets[0]["count"] == 1

    def test_registrant_score(self, client, attendee, host, webinar_id, registration_id):
        client.post(f"/api/webinars/{webinar_id}/cta-clicks", headers=attendee, json={"cta": "buy"})
        resp = client.get(
            f"/api/reports/webinars/{webinar_id}/registrants/{registration_id}/score", headers=host,
        )
        assert resp.json() == {"registration_id": registration_id, "total_points": 5}

    def test_leaderboard_paging_and_threshold(self, client, attendee, host, webinar_id):
        client.post(f"/api/webinars/{webinar_id}/chat", headers=attendee, json={"message": "hi"})
        url = f"/api/reports/webinars/{webinar_id}/leaderboard"
        assert client.get(url, headers=host, params={"min_score": 2}).json() == []
        assert client.get(url, headers=host, params={"offset": 1}).json() == []
        assert client.get(url, headers=host, params={"offset": -1}).status_code == 422

    def test_registrant_drill_downs(self, client, attendee, host, webinar_id, registration_id):
        client.post(f"/api/webinars/{webinar_id}/cta-clicks", headers=attendee, json={"cta": "buy"})
        base = f"/api/reports/webinars/{webinar_id}/registrants"

        events = client.get(f"{base}/{registration_id}/events", headers=host).json()
        assert [(e["kind"], e["points_awarded"]) for e in events] == [("cta_click", 5)]

        watch = client.get(f"{base}/{registration_id}/watch", headers=host).json()
        assert watch["total_watch_seconds"] == 0
        assert watch["highest_milestone"] == 0

        assert client.get(f"{base}/missing/events", headers=host).status_code == 404

    def test_unknown_webinar_is_404(self, client, host):
        resp = client.get("/api/reports/webinars/missing/engagement", headers=host)
        assert resp.status_code == 404


class TestWeightRoutes:
    def test_override_applies_to_later_events(self, client, attendee, host, webinar_id, registration_id):
        url = "/api/companies/company-1/weights"
        assert client.get(url, headers=host).json()["overrides"] == {}

        updated = client.put(url, headers=host, json={"points": {"chat_message": 7}})
        assert updated.status_code == 200
        assert updated.json()["points"]["chat_message"] == 7

        chat = client.post(f"/api/webinars/{webinar_id}/chat", headers=attendee, json={"message": "hi"})
        assert chat.status_code == 201
        score = client.get(
            f"/api/reports/webinars/{webinar_id}/registrants/{registration_id}/score", headers=host,
        )
        assert score.json()["total_points"] == 7

        reset = client.delete(url, headers=host)
        assert reset.json()["removed"] == 1
        assert reset.json()["points"]["chat_message"] == 1

    def test_unknown_kind_is_422(self, client, host):
        resp = client.put("/api/companies/company-1/weights", headers=host, json={"points": {"nope": 1}})
        assert resp.status_code == 422

    def test_other_company_is_403(self, client, host):
        assert client.get("/api/companies/company-2/weights", headers=host).status_code == 403


# ===========================================================================
# Realtime WebSocket
# ===========================================================================
class TestRealtimeSocket:
    def test_subscribe_then_receive_change(self, client, attendee_token, attendee, webinar_id):
        topic = f"webinar:{webinar_id}"
        url = f"/api/webinars/{webinar_id}/realtime?token={attendee_token}"
        with client.websocket_connect(url) as ws:
            ws.send_json({"action": "subscribe", "topic": topic})
            assert ws.receive_json()["event"] == "subscribed"

            client.post(f"/api/webinars/{webinar_id}/chat", headers=attendee, json={"message": "live"})
            change = ws.receive_json()
            assert change["event"] == "change"
            assert change["payload"]["table"] == "chat_messages"
            assert change["payload"]["record"]["message"] == "live"

    def test_invalid_json_frame(self, client, attendee_token, webinar_id):
        url = f"/api/webinars/{webinar_id}/realtime?token={attendee_token}"
        with client.websocket_connect(url) as ws:
            ws.send_text("{nope")
            assert ws.receive_json()["payload"]["reason"] == "invalid JSON"

    def test_bad_token_is_closed(self, client, webinar_id):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/webinars/{webinar_id}/realtime?token=bad"):
                pass
        assert exc_info.value.code == 4401

    def test_wrong_webinar_is_closed(self, client, attendee_token):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/webinars/elsewhere/realtime?token={attendee_token}"):
                pass
        assert exc_info.value.code == 4403
