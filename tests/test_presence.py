"""
tests/test_presence.py — Presence Registry, Gateway and Viewer Count
=====================================================================

PresenceTracker is tested directly with a fake clock; the gateway and the
client PresenceView are driven through in-memory transports.
"""

from __future__ import annotations

import asyncio

from auditorium.client.connection import ReconnectPolicy, RealtimeConnection
from auditorium.client.presence import PresenceView
from auditorium.client.transport import InMemoryTransport
from auditorium.realtime.gateway import GatewaySession, PresenceReaper
from auditorium.realtime.messages import presence_topic
from auditorium.realtime.presence import PresenceTracker

WEBINAR = "w1"
TOPIC = presence_topic(WEBINAR)


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.run(coro)


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _no_sleep(_delay: float) -> None:
    return None


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPresenceTracker:
    def test_two_tabs_count_once(self):
        tracker = PresenceTracker()
        assert tracker.join(TOPIC, "tab-1", "r1", "Ada") is not None
        assert tracker.join(TOPIC, "tab-2", "r1", "Ada") is None
        assert tracker.viewer_count(TOPIC) == 1

        assert tracker.leave(TOPIC, "tab-1") is None
        assert tracker.viewer_count(TOPIC) == 1
        left = tracker.leave(TOPIC, "tab-2")
        assert left.registration_id == "r1"
        assert tracker.viewer_count(TOPIC) == 0

    def test_leave_unknown_connection(self):
        tracker = PresenceTracker()
        assert tracker.leave(TOPIC, "nobody") is None

    def test_snapshot(self):
        tracker = PresenceTracker()
        tracker.join(TOPIC, "c1", "r1", "Ada")
        tracker.join(TOPIC, "c2", "r2", "Grace")
        assert {m.registration_id for m in tracker.snapshot(TOPIC)} == {"r1", "r2"}
        assert tracker.snapshot("presence:other") == []

    def test_expire_stale_respects_heartbeats(self):
        clock = FakeClock()
        tracker = PresenceTracker(clock=clock)
        tracker.join(TOPIC, "quiet", "r1", "Ada")
        tracker.join(TOPIC, "chatty", "r2", "Grace")

        clock.now += 50
        tracker.touch("chatty")
        clock.now += 20

        expired = tracker.expire_stale(timeout=60)
        assert [(topic, meta.registration_id) for topic, meta in expired] == [(TOPIC, "r1")]
        assert tracker.viewer_count(TOPIC) == 1


class TestPresenceReaper:
    def test_sweep_broadcasts_leave(self, hub):
        clock = FakeClock()
        tracker = PresenceTracker(clock=clock)
        tracker.join(TOPIC, "c1", "r1", "Ada")
        received: list[dict] = []
        hub.subscribe(TOPIC, received.append)

        clock.now += 120
        reaper = PresenceReaper(hub, tracker, timeout=60)
        assert reaper.sweep_once() == 1
        assert received[0]["event"] == "leave"
        assert received[0]["payload"]["registration_id"] == "r1"

    def test_default_interval(self, hub):
        reaper = PresenceReaper(hub, PresenceTracker(), timeout=60)
        assert reaper.interval == 30


class TestGatewayPresence:
    def test_track_requires_presence_topic(self, hub, presence):
        async def _run():
            session = GatewaySession(
                hub, presence, webinar_id=WEBINAR, registration_id="r1", display_name="Ada",
            )
            session.handle({"action": "track", "topic": f"webinar:{WEBINAR}"})
            return session.outbound.get_nowait()

        reply = run_async(_run())
        assert reply["event"] == "error"
        assert presence.viewer_count(TOPIC) == 0

    def test_unknown_action(self, hub, presence):
        async def _run():
            session = GatewaySession(
                hub, presence, webinar_id=WEBINAR, registration_id="r1", display_name="Ada",
            )
            session.handle({"action": "explode"})
            return session.outbound.get_nowait()

        assert run_async(_run())["event"] == "error"

    def test_close_leaves(self, hub, presence):
        async def _run():
            session = GatewaySession(
                hub, presence, webinar_id=WEBINAR, registration_id="r1", display_name="Ada",
            )
            session.handle({"action": "track", "topic": TOPIC})
            during = presence.viewer_count(TOPIC)
            session.close()
            session.close()
            return during

        assert run_async(_run()) == 1
        assert presence.viewer_count(TOPIC) == 0
        assert hub.subscriber_count(TOPIC) == 0


def _connection(hub, presence, registration_id: str, name: str, made: list) -> RealtimeConnection:
    def _factory():
        transport = InMemoryTransport(lambda: GatewaySession(
            hub, presence, webinar_id=WEBINAR, registration_id=registration_id, display_name=name,
        ))
        made.append(transport)
        return transport

    return RealtimeConnection(
        _factory, policy=ReconnectPolicy(jitter=0.0), heartbeat_interval=0, sleep=_no_sleep,
    )


class TestPresenceView:
    def test_join_and_leave_update_the_count(self, hub, presence):
        async def _run():
            made: list = []
            ada = _connection(hub, presence, "r1", "Ada", made)
            grace = _connection(hub, presence, "r2", "Grace", made)
            await ada.open()
            await grace.open()

            ada_view = PresenceView(ada, WEBINAR, display_name="Ada")
            await ada_view.mount()
            await settle()
            alone = ada_view.viewer_count

            async with PresenceView(grace, WEBINAR, display_name="Grace") as grace_view:
                await settle()
                together = (ada_view.viewer_count, grace_view.viewer_count)
            await settle()
            after_leave = ada_view.viewer_count

            await ada_view.unmount()
            await ada.close()
            await grace.close()
            return alone, together, after_leave

        alone, together, after_leave = run_async(_run())
        assert alone == 1
        assert together == (2, 2)
        assert after_leave == 1
        assert presence.viewer_count(TOPIC) == 0

    def test_stale_until_resynced(self, hub, presence):
        async def _run():
            made: list = []
            conn = _connection(hub, presence, "r1", "Ada", made)
            await conn.open()
            view = PresenceView(conn, WEBINAR, display_name="Ada")
            initially = view.stale
            await view.mount()
            await settle()
            synced = view.stale

            stale_seen: list[bool] = []
            conn.on_state_change(lambda state: stale_seen.append(view.stale))
            made[-1].drop()
            await settle()
            await conn.wait_connected()
            await settle()
            resynced = view.stale
            count = view.viewer_count

            await view.unmount()
            await conn.close()
            return initially, synced, stale_seen, resynced, count

        initially, synced, stale_seen, resynced, count = run_async(_run())
        assert initially is True
        assert synced is False
        # RECONNECTING marks the view stale before CONNECTED fires
        assert stale_seen[0] is True
        assert resynced is False
        assert count == 1
