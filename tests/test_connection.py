"""Tests for ConnectionSupervisor (in-memory sessions, no sockets)."""

import asyncio
import time

import pytest

from mhu_client.connection import ConnectionSupervisor
from mhu_client.errors import HubConnectionError, HubTimeoutError
from mhu_client.types import (
    ConnectionState,
    ConnectionStats,
    Framing,
    ReconnectConfig,
    ReconnectMode,
)


class Recorder:
    """Collects frames and state transitions."""

    def __init__(self):
        self.frames = []
        self.states = []

    async def on_frame(self, frame):
        self.frames.append(frame)

    def on_state(self, state):
        self.states.append(state)


def make_supervisor(factory, recorder, **kwargs):
    kwargs.setdefault("reconnect", ReconnectConfig(base_delay=0.05))
    return ConnectionSupervisor(
        factory,
        recorder.on_frame,
        on_state_change=recorder.on_state,
        **kwargs,
    )


class TestReadLoop:
    @pytest.mark.asyncio
    async def test_frames_forwarded_in_socket_order(
        self, fake_factory, fake_session, eventually
    ):
        session = fake_session(
            [
                b"3456.orders.created.42\n",
                b"3456.orders.upd",
                b"ated.7\n3456.orders.deleted.9\n",
            ],
            hold_open=True,
        )
        rec = Recorder()
        sup = make_supervisor(fake_factory(session), rec)
        task = asyncio.create_task(sup.run())

        await eventually(lambda: len(rec.frames) == 3)
        assert rec.frames == [
            b"3456.orders.created.42",
            b"3456.orders.updated.7",
            b"3456.orders.deleted.9",
        ]
        assert sup.state == ConnectionState.READING
        assert sup.is_connected is True

        await sup.stop()
        await task
        assert sup.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_read_framing_passes_raw_reads(
        self, fake_factory, fake_session, eventually
    ):
        session = fake_session([b"a.t.x.1\n\x00\x00", b"a.t.x.2"], hold_open=True)
        rec = Recorder()
        sup = make_supervisor(fake_factory(session), rec, framing=Framing.READ)
        task = asyncio.create_task(sup.run())

        await eventually(lambda: len(rec.frames) == 2)
        assert rec.frames == [b"a.t.x.1\n\x00\x00", b"a.t.x.2"]

        await sup.stop()
        await task

    @pytest.mark.asyncio
    async def test_frame_callback_error_does_not_end_session(
        self, fake_factory, fake_session, eventually
    ):
        session = fake_session([b"boom.t.x.1\n", b"ok.t.x.2\n"], hold_open=True)
        seen = []

        async def on_frame(frame):
            seen.append(frame)
            if frame.startswith(b"boom"):
                raise RuntimeError("handler blew up")

        factory = fake_factory(session)
        sup = ConnectionSupervisor(factory, on_frame)
        task = asyncio.create_task(sup.run())

        await eventually(lambda: len(seen) == 2)
        assert len(factory.created) == 1
        assert sup.state == ConnectionState.READING

        await sup.stop()
        await task

    @pytest.mark.asyncio
    async def test_oversized_frames_counted(self, fake_factory, fake_session, eventually):
        stats = ConnectionStats()
        session = fake_session([b"x" * 64 + b"\n", b"a.t.x.1\n"], hold_open=True)
        rec = Recorder()
        sup = make_supervisor(
            fake_factory(session), rec, max_frame_size=16, stats=stats
        )
        task = asyncio.create_task(sup.run())

        await eventually(lambda: len(rec.frames) == 1)
        assert rec.frames == [b"a.t.x.1"]
        assert stats.frames_dropped == 1
        assert stats.bytes_received == 65 + 8

        await sup.stop()
        await task


class TestReconnect:
    @pytest.mark.asyncio
    async def test_read_error_triggers_one_reconnect(
        self, fake_factory, fake_session, eventually
    ):
        first = fake_session([b"a.t.x.1\n", HubConnectionError("reset by peer")])
        second = fake_session(hold_open=True)
        factory = fake_factory(first, second)
        rec = Recorder()
        stats = ConnectionStats()
        sup = make_supervisor(factory, rec, stats=stats)
        task = asyncio.create_task(sup.run())

        await eventually(lambda: sup.session is second and sup.state == ConnectionState.READING)
        assert first.closed is True
        assert len(factory.created) == 2
        assert second.events == ["connect"]
        assert stats.reconnect_count == 1
        assert rec.states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.READING,
            ConnectionState.DISCONNECTED,
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.READING,
        ]

        await sup.stop()
        await task
        assert second.closed is True

    @pytest.mark.asyncio
    async def test_clean_close_triggers_reconnect(
        self, fake_factory, fake_session, eventually
    ):
        first = fake_session([b"a.t.x.1\n"])  # then EOF
        factory = fake_factory(first)
        rec = Recorder()
        sup = make_supervisor(factory, rec)
        task = asyncio.create_task(sup.run())

        await eventually(lambda: len(factory.created) == 2)
        assert rec.frames == [b"a.t.x.1"]
        assert first.closed is True

        await sup.stop()
        await task

    @pytest.mark.asyncio
    async def test_failed_handshakes_back_off(self, fake_factory, fake_session):
        factory = fake_factory(
            default=lambda: fake_session(connect_error=HubConnectionError("refused"))
        )
        rec = Recorder()
        stats = ConnectionStats()
        sup = make_supervisor(
            factory, rec, reconnect=ReconnectConfig(base_delay=0.1), stats=stats
        )
        task = asyncio.create_task(sup.run())

        await asyncio.sleep(0.35)
        assert sup.is_connected is False
        await sup.stop()
        await task

        attempts = len(factory.created)
        # One immediate attempt plus one per backoff interval, never a tight loop
        assert 2 <= attempts <= 5
        assert stats.connect_failures >= attempts - 1
        assert all(s.closed for s in factory.created)

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_handshake(self, fake_factory, fake_session, eventually):
        factory = fake_factory(
            fake_session(connect_error=HubTimeoutError("slow hub")),
        )
        rec = Recorder()
        sup = make_supervisor(factory, rec, reconnect=ReconnectConfig(base_delay=0.01))
        task = asyncio.create_task(sup.run())

        await eventually(lambda: sup.state == ConnectionState.READING)
        assert len(factory.created) == 2

        await sup.stop()
        await task

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, fake_factory, fake_session):
        factory = fake_factory(
            default=lambda: fake_session(connect_error=HubConnectionError("refused"))
        )
        rec = Recorder()
        sup = make_supervisor(
            factory, rec, reconnect=ReconnectConfig(base_delay=0.01, max_attempts=3)
        )

        await asyncio.wait_for(sup.run(), timeout=2.0)
        assert len(factory.created) == 3
        assert sup.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_session_with_traffic_resets_attempt_budget(
        self, fake_factory, fake_session, eventually
    ):
        def refused():
            return fake_session(connect_error=HubConnectionError("refused"))

        factory = fake_factory(
            refused(),
            fake_session([b"a.t.x.1\n", HubConnectionError("reset")]),
            refused(),
            fake_session(hold_open=True),
        )
        rec = Recorder()
        sup = make_supervisor(
            factory, rec, reconnect=ReconnectConfig(base_delay=0.01, max_attempts=2)
        )
        task = asyncio.create_task(sup.run())

        await eventually(lambda: len(factory.created) == 4 and sup.is_connected)
        await sup.stop()
        await task

    @pytest.mark.asyncio
    async def test_sessions_failing_on_first_read_back_off(self, fake_factory, fake_session):
        factory = fake_factory(
            default=lambda: fake_session([HubConnectionError("certificate rejected")])
        )
        rec = Recorder()
        stats = ConnectionStats()
        sup = make_supervisor(
            factory, rec, reconnect=ReconnectConfig(base_delay=10.0), stats=stats
        )
        task = asyncio.create_task(sup.run())

        await asyncio.sleep(0.5)
        await sup.stop()
        await task

        assert len(factory.created) <= 2
        assert stats.connect_failures == 0
        assert rec.frames == []

    @pytest.mark.asyncio
    async def test_empty_sessions_back_off_on_cadence(self, fake_factory, fake_session):
        factory = fake_factory(default=lambda: fake_session())  # connect, then EOF
        rec = Recorder()
        sup = make_supervisor(factory, rec, reconnect=ReconnectConfig(base_delay=0.1))
        task = asyncio.create_task(sup.run())

        await asyncio.sleep(0.35)
        await sup.stop()
        await task

        assert 2 <= len(factory.created) <= 5
        assert all(s.closed for s in factory.created)

    @pytest.mark.asyncio
    async def test_empty_sessions_count_toward_max_attempts(self, fake_factory, fake_session):
        factory = fake_factory(
            default=lambda: fake_session([HubConnectionError("certificate rejected")])
        )
        rec = Recorder()
        sup = make_supervisor(
            factory, rec, reconnect=ReconnectConfig(base_delay=0.01, max_attempts=3)
        )

        await asyncio.wait_for(sup.run(), timeout=2.0)
        assert len(factory.created) == 3
        assert sup.state == ConnectionState.CLOSED


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_interrupts_blocked_read(self, fake_factory, fake_session, eventually):
        session = fake_session(hold_open=True)
        rec = Recorder()
        sup = make_supervisor(fake_factory(session), rec)
        task = asyncio.create_task(sup.run())

        await eventually(lambda: sup.state == ConnectionState.READING)
        await asyncio.wait_for(sup.stop(), timeout=1.0)
        await task
        assert session.closed is True
        assert sup.session is None
        assert rec.states[-1] == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_stop_interrupts_backoff(self, fake_factory, fake_session, eventually):
        factory = fake_factory(
            default=lambda: fake_session(connect_error=HubConnectionError("refused"))
        )
        rec = Recorder()
        sup = make_supervisor(factory, rec, reconnect=ReconnectConfig(base_delay=30.0))
        task = asyncio.create_task(sup.run())

        await eventually(lambda: len(factory.created) == 1)
        await asyncio.sleep(0.02)
        started = time.monotonic()
        await asyncio.wait_for(sup.stop(), timeout=1.0)
        await task
        assert time.monotonic() - started < 1.0
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_stop_interrupts_handshake(self, fake_factory, fake_session, eventually):
        gate = asyncio.Event()

        class HangingSession(fake_session):
            async def connect(self):
                self.events.append("connect")
                await gate.wait()

        session = HangingSession()
        rec = Recorder()
        sup = make_supervisor(fake_factory(session), rec)
        task = asyncio.create_task(sup.run())

        await eventually(lambda: session.events == ["connect"])
        await asyncio.wait_for(sup.stop(), timeout=1.0)
        await task
        assert session.closed is True
        assert sup.state == ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_stop_before_run(self, fake_factory):
        sup = ConnectionSupervisor(fake_factory(), lambda frame: None)
        await sup.stop()
        assert sup.state == ConnectionState.CLOSED
        with pytest.raises(HubConnectionError):
            await sup.run()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, fake_factory, eventually):
        rec = Recorder()
        sup = make_supervisor(fake_factory(), rec)
        task = asyncio.create_task(sup.run())
        await eventually(lambda: sup.is_connected)
        await sup.stop()
        await sup.stop()
        await task


class TestSend:
    @pytest.mark.asyncio
    async def test_send_over_live_session(self, fake_factory, fake_session, eventually):
        session = fake_session(hold_open=True)
        stats = ConnectionStats()
        sup = make_supervisor(fake_factory(session), Recorder(), stats=stats)
        task = asyncio.create_task(sup.run())

        await eventually(lambda: sup.is_connected)
        assert await sup.send(b"3456.orders.created.42\n") is True
        assert session.writes == [b"3456.orders.created.42\n"]
        assert stats.bytes_sent == 23

        await sup.stop()
        await task

    @pytest.mark.asyncio
    async def test_send_without_session(self, fake_factory):
        sup = ConnectionSupervisor(fake_factory(), lambda frame: None)
        assert await sup.send(b"x.y.z.1\n") is False

    @pytest.mark.asyncio
    async def test_send_failure_returns_false(self, fake_factory, fake_session, eventually):
        session = fake_session(hold_open=True, write_error=HubConnectionError("broken pipe"))
        sup = make_supervisor(fake_factory(session), Recorder())
        task = asyncio.create_task(sup.run())

        await eventually(lambda: sup.is_connected)
        assert await sup.send(b"x.y.z.1\n") is False

        await sup.stop()
        await task


class TestBackoffDelay:
    def _sup(self, **cfg):
        return ConnectionSupervisor(lambda: None, lambda frame: None, reconnect=ReconnectConfig(**cfg))

    def test_fixed_default_is_ten_seconds(self):
        sup = ConnectionSupervisor(lambda: None, lambda frame: None)
        for failures in (1, 2, 10):
            sup._failed_attempts = failures
            assert sup._calculate_delay() == 10.0

    def test_exponential(self):
        sup = self._sup(mode=ReconnectMode.EXPONENTIAL, base_delay=1.0, factor=2.0)
        delays = []
        for failures in (1, 2, 3, 4):
            sup._failed_attempts = failures
            delays.append(sup._calculate_delay())
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_linear(self):
        sup = self._sup(mode=ReconnectMode.LINEAR, base_delay=2.0)
        sup._failed_attempts = 3
        assert sup._calculate_delay() == 6.0

    def test_fibonacci(self):
        sup = self._sup(mode=ReconnectMode.FIBONACCI, base_delay=1.0)
        delays = []
        for failures in (1, 2, 3, 4, 5):
            sup._failed_attempts = failures
            delays.append(sup._calculate_delay())
        assert delays == [1.0, 1.0, 2.0, 3.0, 5.0]

    def test_capped_at_max_delay(self):
        sup = self._sup(mode=ReconnectMode.EXPONENTIAL, base_delay=1.0, factor=10.0, max_delay=30.0)
        sup._failed_attempts = 5
        assert sup._calculate_delay() == 30.0

    def test_jitter_stays_within_ten_percent(self):
        sup = self._sup(base_delay=10.0, jitter=True)
        sup._failed_attempts = 1
        for _ in range(50):
            assert 9.0 <= sup._calculate_delay() <= 11.0
