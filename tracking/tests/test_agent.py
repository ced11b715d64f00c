"""
Location Acquisition Agent Tests
================================

Driven with fake sources and sinks and a short tick, so that both the
device path and the degraded path can be forced deterministically.
"""

import asyncio
import random
from datetime import datetime, timedelta, timezone as dt_timezone

from django.test import SimpleTestCase, TransactionTestCase

from tracking import events
from tracking.agent import (
    AgentRegistry,
    AgentState,
    BroadcasterSink,
    DeliveryFailed,
    LocationAgent,
    Position,
    SimulatedPositionSource,
    UnavailablePositionSource,
    compute_statistics,
)
from tracking.agent.sinks import LocationSink
from tracking.agent.sources import HttpPositionSource, PositionSource
from tracking.exceptions import LocationUnavailable, NotAuthorized
from tracking.models import Order
from tracking.tests.helpers import create_actors, create_order, make_service

TICK = 0.01


class ScriptedSource(PositionSource):
    """Returns positions (or raises exceptions) from a script, then repeats the last entry."""

    name = 'scripted'

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    async def get_position(self):
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return Position(latitude=item[0], longitude=item[1])


class SlowSource(PositionSource):
    name = 'slow'

    async def get_position(self):
        await asyncio.sleep(1)
        return Position(latitude=0.0, longitude=0.0)


class RecordingSink(LocationSink):

    def __init__(self, errors=None):
        self.received = []
        self.errors = list(errors or [])

    async def send(self, order_id, position):
        self.received.append((order_id, position))
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error


async def wait_for_samples(agent, count, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while agent.session.samples_accepted < count:
        if loop.time() > deadline:
            raise AssertionError(f"only {agent.session.samples_accepted} samples after {timeout}s")
        await asyncio.sleep(TICK / 2)


async def wait_for_calls(source, count, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while source.calls < count:
        if loop.time() > deadline:
            raise AssertionError(f"only {source.calls} source calls after {timeout}s")
        await asyncio.sleep(TICK / 2)


def make_agent(source, sink=None, **kwargs):
    kwargs.setdefault('interval', TICK)
    kwargs.setdefault('fetch_timeout', 0.05)
    kwargs.setdefault('fallback', SimulatedPositionSource(rng=random.Random(42)))
    return LocationAgent('order-1', sink or RecordingSink(), source=source, **kwargs)


class TestDegradedMode(SimpleTestCase):

    async def test_denied_geolocation_still_streams(self):
        """No device position: degraded, first sample synthesized at once, more every tick."""
        states = []
        sink = RecordingSink()
        agent = make_agent(UnavailablePositionSource(), sink, on_state_change=states.append)

        session = await agent.start()
        self.assertTrue(agent.degraded)
        self.assertEqual(states, [AgentState.DEGRADED])
        self.assertEqual(len(session.locations), 1)
        self.assertTrue(session.locations[0].simulated)

        await wait_for_samples(agent, 3)
        await agent.stop()
        self.assertGreaterEqual(len(sink.received), 3)
        self.assertTrue(all(p.simulated for _, p in sink.received))

    async def test_permission_error_enters_degraded(self):
        agent = make_agent(ScriptedSource([LocationUnavailable("Accès à la position refusé")]))
        await agent.start()
        self.assertTrue(agent.degraded)
        await agent.stop()

    async def test_slow_device_counts_as_failure(self):
        agent = make_agent(SlowSource(), fetch_timeout=0.01)
        session = await agent.start()
        self.assertTrue(agent.degraded)
        self.assertTrue(session.locations[0].simulated)
        await agent.stop()

    async def test_unexpected_source_error_is_absorbed(self):
        agent = make_agent(ScriptedSource([RuntimeError("bridge crashed")]))
        with self.assertLogs('tracking.agent.agent', level='ERROR'):
            await agent.start()
        self.assertTrue(agent.degraded)
        await agent.stop()

    async def test_out_of_range_first_fix_starts_degraded(self):
        """A bad first fix is a failed fetch: start() returns a live, degraded session."""
        agent = make_agent(ScriptedSource([(95.0, -74.0)]))
        with self.assertLogs('tracking.agent.agent', level='WARNING'):
            session = await agent.start()

        self.assertTrue(agent.is_active)
        self.assertTrue(agent.degraded)
        self.assertTrue(session.locations[0].simulated)
        await wait_for_samples(agent, 3)
        await agent.stop()

    async def test_out_of_range_fix_mid_stream_keeps_streaming(self):
        sink = RecordingSink()
        source = ScriptedSource([(40.71, -74.0), (95.0, -74.0), (40.72, -74.0)])
        agent = make_agent(source, sink)
        await agent.start()

        await wait_for_calls(source, 5)
        self.assertTrue(agent.is_active)
        self.assertEqual(agent.state, AgentState.ACQUIRING)
        await agent.stop()

        latitudes = [p.latitude for _, p in sink.received]
        self.assertNotIn(95.0, latitudes)
        self.assertEqual(latitudes[-1], 40.72)

    async def test_recovers_when_device_answers_again(self):
        states = []
        source = ScriptedSource([LocationUnavailable(), (48.8566, 2.3522)])
        agent = make_agent(source, on_state_change=states.append)

        await agent.start()
        self.assertTrue(agent.degraded)
        await wait_for_samples(agent, 3)
        await agent.stop()

        self.assertEqual(states[:2], [AgentState.DEGRADED, AgentState.ACQUIRING])
        self.assertFalse(agent.session.locations[-1].simulated)

    async def test_fallback_walk_is_bounded(self):
        fallback = SimulatedPositionSource(origin=(4.05, 9.70), rng=random.Random(7), max_step=0.0005)
        previous = fallback.last
        for _ in range(50):
            position = await fallback.get_position()
            self.assertLessEqual(abs(position.latitude - previous[0]), 0.0005 + 1e-9)
            self.assertLessEqual(abs(position.longitude - previous[1]), 0.0005 + 1e-9)
            previous = position.coordinates


class TestAcquiring(SimpleTestCase):

    async def test_device_fix_is_used_and_seeds_fallback(self):
        fallback = SimulatedPositionSource(rng=random.Random(1))
        agent = make_agent(ScriptedSource([(4.0489, 9.7067)]), fallback=fallback)

        session = await agent.start()
        self.assertEqual(agent.state, AgentState.ACQUIRING)
        self.assertFalse(session.current_location.simulated)
        self.assertEqual(fallback.last, (4.0489, 9.7067))
        await agent.stop()

    async def test_start_twice_returns_running_session(self):
        agent = make_agent(ScriptedSource([(4.0, 9.0)]))
        first = await agent.start()
        second = await agent.start()
        self.assertIs(first, second)
        await agent.stop()

    async def test_history_is_capped(self):
        agent = make_agent(ScriptedSource([(4.0, 9.0)]), history_size=3)
        await agent.start()
        await wait_for_samples(agent, 6)
        await agent.stop()
        self.assertEqual(len(agent.session.locations), 3)
        self.assertGreaterEqual(agent.session.samples_accepted, 6)


class TestSessionEnd(SimpleTestCase):

    async def test_stop_is_idempotent(self):
        """Two stops: one statistics record, one session-end callback."""
        ended = []
        agent = make_agent(UnavailablePositionSource(), on_session_end=ended.append)
        await agent.start()
        await wait_for_samples(agent, 2)

        first = await agent.stop()
        stats = first.statistics
        second = await agent.stop()

        self.assertIs(first, second)
        self.assertIs(second.statistics, stats)
        self.assertEqual(len(ended), 1)
        self.assertEqual(agent.state, AgentState.IDLE)
        self.assertIsNotNone(first.end_time)

    async def test_no_samples_after_stop(self):
        sink = RecordingSink()
        agent = make_agent(UnavailablePositionSource(), sink)
        await agent.start()
        await agent.stop()
        count = len(sink.received)
        await asyncio.sleep(TICK * 5)
        self.assertEqual(len(sink.received), count)

    async def test_stop_before_start(self):
        agent = make_agent(UnavailablePositionSource())
        self.assertIsNone(await agent.stop())

    async def test_write_refused_ends_session(self):
        """NotAuthorized from the write boundary (order delivered) ends the session."""
        ended = []
        sink = RecordingSink(errors=[None, NotAuthorized()])
        agent = make_agent(UnavailablePositionSource(), sink, on_session_end=ended.append)
        await agent.start()
        await asyncio.wait_for(agent.wait_closed(), timeout=2)

        self.assertFalse(agent.is_active)
        self.assertEqual(len(ended), 1)
        self.assertEqual(agent.session.statistics.sample_count, 2)

    async def test_delivery_failure_does_not_stop_stream(self):
        sink = RecordingSink(errors=[DeliveryFailed("HTTP 502")])
        agent = make_agent(UnavailablePositionSource(), sink)
        await agent.start()
        await wait_for_samples(agent, 3)
        self.assertTrue(agent.is_active)
        await agent.stop()

    async def test_unexpected_sink_error_is_logged_and_stream_continues(self):
        sink = RecordingSink(errors=[None, RuntimeError("socket reset")])
        agent = make_agent(UnavailablePositionSource(), sink)
        with self.assertLogs('tracking.agent.agent', level='ERROR') as logs:
            await agent.start()
            await wait_for_samples(agent, 4)
        self.assertTrue(agent.is_active)
        self.assertIn('RuntimeError', ''.join(logs.output))
        await agent.stop()


class FakeResponse:

    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self.data = data

    def json(self):
        return self.data


class FakeSession:

    def __init__(self, response):
        self.response = response

    def get(self, url, timeout=None):
        return self.response


class TestHttpPositionSource(SimpleTestCase):

    def source(self, response):
        return HttpPositionSource('http://127.0.0.1:8765/position', session=FakeSession(response))

    async def test_fix_is_parsed(self):
        position = await self.source(FakeResponse(data={'lat': 4.05, 'lng': 9.7, 'accuracy': 12})).get_position()
        self.assertEqual(position.coordinates, (4.05, 9.7))
        self.assertEqual(position.accuracy, 12.0)

    async def test_out_of_range_fix_is_unavailable(self):
        for data in ({'latitude': 95.0, 'longitude': 0}, {'latitude': 0, 'longitude': 200},
                     {'latitude': 'nan', 'longitude': 0}):
            with self.assertRaises(LocationUnavailable):
                await self.source(FakeResponse(data=data)).get_position()

    async def test_denied_access_is_unavailable(self):
        with self.assertRaises(LocationUnavailable):
            await self.source(FakeResponse(status_code=403)).get_position()


class TestStatistics(SimpleTestCase):

    def test_distance_speed_and_duration(self):
        start = datetime(2026, 1, 15, 12, 0, tzinfo=dt_timezone.utc)
        positions = [
            Position(0.0, 0.0, timestamp=start),
            Position(0.1, 0.0, timestamp=start + timedelta(minutes=15)),
            Position(0.2, 0.0, timestamp=start + timedelta(minutes=30)),
        ]
        stats = compute_statistics(positions)
        self.assertAlmostEqual(stats.total_distance_km, 22.239, places=2)
        self.assertAlmostEqual(stats.average_speed_kmh, 44.48, places=1)
        self.assertEqual(stats.sample_count, 3)
        self.assertEqual(stats.duration_seconds, 1800.0)

    def test_single_sample(self):
        stats = compute_statistics([Position(1.0, 1.0)])
        self.assertEqual(stats.total_distance_km, 0.0)
        self.assertEqual(stats.average_speed_kmh, 0.0)
        self.assertEqual(stats.sample_count, 1)

    def test_empty(self):
        self.assertEqual(compute_statistics([]).sample_count, 0)


class TestAgentRegistry(SimpleTestCase):

    async def test_tracking_stop_ends_session(self):
        registry = AgentRegistry()
        agent = registry.register(make_agent(UnavailablePositionSource()))
        await agent.start()

        stopped = await registry.handle_event({'type': 'tracking_stop', 'order_id': 'order-1'})
        self.assertTrue(stopped)
        self.assertFalse(agent.is_active)
        self.assertIsNone(registry.get('order-1'))

    async def test_terminal_status_ends_session(self):
        registry = AgentRegistry()
        agent = registry.register(make_agent(UnavailablePositionSource()))
        await agent.start()

        self.assertFalse(await registry.handle_event(
            {'type': 'status_update', 'order_id': 'order-1', 'status': 'in_transit'}
        ))
        self.assertTrue(agent.is_active)
        self.assertTrue(await registry.handle_event(
            {'type': 'status_update', 'order_id': 'order-1', 'status': 'delivered'}
        ))
        self.assertFalse(agent.is_active)

    async def test_unrelated_order_ignored(self):
        registry = AgentRegistry()
        agent = registry.register(make_agent(UnavailablePositionSource()))
        await agent.start()
        self.assertFalse(await registry.handle_event({'type': 'tracking_stop', 'order_id': 'order-2'}))
        await registry.stop_all()
        self.assertFalse(agent.is_active)


class TestAgentThroughService(TransactionTestCase):
    """The agent writing through the real service and database."""

    def setUp(self):
        self.actors = create_actors()
        self.service = make_service()
        self.order = create_order(self.actors['vendor'], self.actors['customer'])
        self.service.assign_courier(self.order.pk, self.actors['courier'].pk, self.actors['vendor'])
        self.service.broadcaster.sent.clear()

    async def test_degraded_samples_update_current_location(self):
        """Denied geolocation still moves currentLocation and notifies the order's rooms."""
        agent = LocationAgent(
            self.order.pk,
            sink=BroadcasterSink(self.service, self.actors['courier']),
            source=UnavailablePositionSource(),
            fallback=SimulatedPositionSource(origin=(40.7128, -74.0060), rng=random.Random(3)),
            interval=TICK,
        )
        session = await agent.start()
        self.assertTrue(agent.degraded)
        await agent.stop()

        order = await Order.objects.aget(pk=self.order.pk)
        self.assertAlmostEqual(order.current_latitude, session.locations[-1].latitude)
        self.assertEqual(await order.location_history.acount(), session.samples_accepted)

        kinds = self.service.broadcaster.kinds()
        self.assertIn(events.LOCATION_UPDATE, kinds)

    async def test_bad_device_fix_never_reaches_the_order(self):
        source = ScriptedSource([(40.71, -74.0), (95.0, -74.0), (40.72, -74.0)])
        agent = LocationAgent(
            self.order.pk,
            sink=BroadcasterSink(self.service, self.actors['courier']),
            source=source,
            interval=TICK,
        )
        await agent.start()
        await wait_for_calls(source, 5)
        self.assertTrue(agent.is_active)
        session = await agent.stop()

        order = await Order.objects.aget(pk=self.order.pk)
        self.assertEqual(order.current_latitude, 40.72)
        self.assertEqual(await order.location_history.acount(), session.samples_accepted)
        self.assertEqual(await order.location_history.filter(latitude__gt=90).acount(), 0)

    async def test_other_courier_session_ends_on_refusal(self):
        agent = LocationAgent(
            self.order.pk,
            sink=BroadcasterSink(self.service, self.actors['other_courier']),
            source=UnavailablePositionSource(),
            interval=TICK,
        )
        await agent.start()
        self.assertFalse(agent.is_active)
        self.assertEqual(self.service.broadcaster.sent, [])
