"""
Test suite for the monitoring module
Tests: error counters, system snapshot, live connection registry, the status
feed socket, the reconnecting feed client and the health endpoint
"""
import asyncio
import json
from unittest.mock import MagicMock, patch

from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from rest_framework import status
from rest_framework_simplejwt.tokens import AccessToken

from backend.core.exceptions import api_error
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.monitoring.client import CONNECTION_ERROR, ConnectionState, StatusFeedClient
from backend.monitoring.connections import ConnectionRegistry
from backend.monitoring.errors import WINDOW_SECONDS, ErrorStats, error_stats
from backend.monitoring.feed import MESSAGE_TYPE, POLICY_VIOLATION, InvalidToken, StatusFeed, user_id_from_token
from backend.monitoring.system_monitor import SystemMonitor


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError('condition not met in time')
        await asyncio.sleep(0.01)


class ErrorStatsTests(SimpleTestCase):

    def test_counts_and_window(self):
        clock = FakeClock()
        stats = ErrorStats(clock=clock)
        stats.record()
        stats.record(unhandled=True)
        self.assertEqual(stats.snapshot(), {'totalErrors': 2, 'errorsLast24h': 2, 'criticalErrors': 1})

        clock.now += WINDOW_SECONDS + 1
        stats.record()
        self.assertEqual(stats.snapshot(), {'totalErrors': 3, 'errorsLast24h': 1, 'criticalErrors': 1})

        stats.reset()
        self.assertEqual(stats.snapshot()['totalErrors'], 0)

    def test_api_error_signal_is_counted(self):
        api_error.send(sender=self.__class__, status_code=500, code='internal_error', unhandled=True)
        self.assertEqual(error_stats.snapshot()['criticalErrors'], 1)


class SystemMonitorTests(TestCase):

    def setUp(self):
        self.connections = ConnectionRegistry()
        self.errors = ErrorStats()
        self.monitor = SystemMonitor(errors=self.errors, connections=self.connections)

    def services(self, snapshot):
        return {s['name']: s['status'] for s in snapshot['services']}

    def test_snapshot_shape(self):
        self.errors.record()
        snapshot = self.monitor.snapshot()
        self.assertEqual(
            set(snapshot), {'performance', 'database', 'services', 'errorStats', 'timestamp', 'pid'}
        )
        self.assertEqual(set(snapshot['performance']), {'cpu', 'memory', 'disk', 'uptime'})
        self.assertEqual(snapshot['database']['status'], 'healthy')
        self.assertGreaterEqual(snapshot['database']['responseTime'], 0)
        self.assertEqual(snapshot['errorStats']['totalErrors'], 1)
        self.assertEqual(
            self.services(snapshot),
            {'API Server': 'running', 'Database': 'running', 'Cache': 'running', 'Email': 'stopped',
             'Status Feed': 'stopped'},
        )

    def test_database_failure_is_reported(self):
        broken = MagicMock()
        broken.cursor.side_effect = DatabaseError('connection refused')
        with patch('backend.monitoring.system_monitor.connection', broken):
            snapshot = self.monitor.snapshot()
        self.assertEqual(snapshot['database'], {'status': 'error', 'responseTime': 0, 'connections': 0})
        self.assertEqual(self.services(snapshot)['Database'], 'error')

    def test_status_feed_running_with_live_connections(self):
        loop = asyncio.new_event_loop()
        try:
            self.connections.register(None, object(), loop=loop)
            self.assertEqual(self.services(self.monitor.snapshot())['Status Feed'], 'running')
        finally:
            loop.close()


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send_text(self, text):
        if self.fail:
            raise RuntimeError('socket closed')
        self.sent.append(json.loads(text))


class ConnectionRegistryTests(SimpleTestCase):

    def test_push_to_user_and_broadcast(self):
        async def scenario():
            registry = ConnectionRegistry()
            phone, laptop, other = FakeSocket(), FakeSocket(), FakeSocket()
            registry.register(1, phone)
            registry.register(1, laptop)
            registry.register(2, other)

            self.assertEqual(registry.connection_count(1), 2)
            self.assertEqual(registry.connection_count(), 3)
            self.assertEqual(registry.push_to_user(1, {'type': 'notification'}), 2)
            self.assertEqual(registry.push_to_user(99, {'type': 'notification'}), 0)
            await wait_until(lambda: phone.sent and laptop.sent)
            self.assertEqual(other.sent, [])

            self.assertEqual(registry.broadcast({'type': 'ping'}), 3)
            await wait_until(lambda: other.sent)
            self.assertEqual(phone.sent, [{'type': 'notification'}, {'type': 'ping'}])

        asyncio.run(scenario())

    def test_push_from_another_thread(self):
        async def scenario():
            registry = ConnectionRegistry()
            socket = FakeSocket()
            registry.register(7, socket)
            scheduled = await asyncio.to_thread(registry.push_to_user, 7, {'type': 'notification', 'data': {}})
            self.assertEqual(scheduled, 1)
            await wait_until(lambda: socket.sent)

        asyncio.run(scenario())

    def test_dead_sockets_are_dropped(self):
        async def scenario():
            registry = ConnectionRegistry()
            registry.register(1, FakeSocket(fail=True))
            registry.push_to_user(1, {'type': 'notification'})
            await wait_until(lambda: registry.connection_count(1) == 0)

        asyncio.run(scenario())

    def test_sockets_of_closed_loops_are_dropped(self):
        registry = ConnectionRegistry()
        loop = asyncio.new_event_loop()
        registry.register(1, FakeSocket(), loop=loop)
        loop.close()
        self.assertEqual(registry.push_to_user(1, {'type': 'notification'}), 0)
        self.assertEqual(registry.connection_count(), 0)


class FakeMonitor:
    def __init__(self):
        self.calls = 0

    def snapshot(self):
        self.calls += 1
        return {'performance': {'cpu': 12.5}, 'call': self.calls}


class BrokenMonitor:
    def __init__(self):
        self.calls = 0

    def snapshot(self):
        self.calls += 1
        raise DatabaseError('monitor unavailable')


class FakePeer:
    """The client side of an ASGI websocket connection"""

    def __init__(self, query_string=b''):
        self.scope = {'type': 'websocket', 'path': '/', 'query_string': query_string, 'headers': []}
        self.incoming = asyncio.Queue()
        self.sent = []

    async def receive(self):
        return await self.incoming.get()

    async def send(self, message):
        self.sent.append(message)

    def frames(self):
        return [json.loads(m['text']) for m in self.sent if m['type'] == 'websocket.send']


class StatusFeedTests(TestCase):

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.token = str(AccessToken.for_user(self.user))

    def test_token_resolution(self):
        self.assertIsNone(user_id_from_token(None))
        self.assertEqual(user_id_from_token(self.token), self.user.id)
        with self.assertRaises(InvalidToken):
            user_id_from_token('not-a-jwt')

    def test_sends_update_immediately_and_ignores_inbound_frames(self):
        connections = ConnectionRegistry()
        monitor = FakeMonitor()
        feed = StatusFeed(monitor=monitor, connections=connections, interval=60)

        async def scenario():
            peer = FakePeer(query_string=f'token={self.token}'.encode())
            peer.incoming.put_nowait({'type': 'websocket.connect'})
            session = asyncio.create_task(feed(peer.scope, peer.receive, peer.send))

            await wait_until(lambda: peer.frames())
            self.assertEqual(peer.sent[0]['type'], 'websocket.accept')
            frame = peer.frames()[0]
            self.assertEqual(frame['type'], MESSAGE_TYPE)
            self.assertEqual(frame['data']['performance'], {'cpu': 12.5})
            self.assertEqual(connections.connection_count(self.user.id), 1)

            peer.incoming.put_nowait({'type': 'websocket.receive', 'text': '{"type": "subscribe"}'})
            self.assertEqual(connections.push_to_user(self.user.id, {'type': 'notification', 'data': {}}), 1)
            await wait_until(lambda: len(peer.frames()) == 2)
            self.assertEqual(peer.frames()[1]['type'], 'notification')

            peer.incoming.put_nowait({'type': 'websocket.disconnect', 'code': 1000})
            await asyncio.wait_for(session, timeout=2)
            self.assertEqual(connections.connection_count(), 0)

        asyncio.run(scenario())
        self.assertEqual(monitor.calls, 1)

    def test_periodic_updates(self):
        monitor = FakeMonitor()
        feed = StatusFeed(monitor=monitor, connections=ConnectionRegistry(), interval=0.01)

        async def scenario():
            peer = FakePeer()
            peer.incoming.put_nowait({'type': 'websocket.connect'})
            session = asyncio.create_task(feed(peer.scope, peer.receive, peer.send))
            await wait_until(lambda: len(peer.frames()) >= 3)
            peer.incoming.put_nowait({'type': 'websocket.disconnect', 'code': 1000})
            await asyncio.wait_for(session, timeout=2)
            return peer.frames()

        frames = asyncio.run(scenario())
        self.assertEqual([f['data']['call'] for f in frames[:3]], [1, 2, 3])

    def test_failed_updates_still_unregister_on_disconnect(self):
        connections = ConnectionRegistry()
        monitor = BrokenMonitor()
        feed = StatusFeed(monitor=monitor, connections=connections, interval=60)

        async def scenario():
            peer = FakePeer(query_string=f'token={self.token}'.encode())
            peer.incoming.put_nowait({'type': 'websocket.connect'})
            session = asyncio.create_task(feed(peer.scope, peer.receive, peer.send))
            await wait_until(lambda: monitor.calls == 1)
            await asyncio.sleep(0.05)
            self.assertEqual(connections.connection_count(self.user.id), 1)

            peer.incoming.put_nowait({'type': 'websocket.disconnect', 'code': 1000})
            await asyncio.wait_for(session, timeout=2)
            self.assertEqual(connections.connection_count(), 0)

        with self.assertLogs('backend.monitoring', level='ERROR'):
            asyncio.run(scenario())

    def test_invalid_token_closes_with_policy_violation(self):
        feed = StatusFeed(monitor=FakeMonitor(), connections=ConnectionRegistry(), interval=60)

        async def scenario():
            peer = FakePeer(query_string=b'token=garbage')
            peer.incoming.put_nowait({'type': 'websocket.connect'})
            await asyncio.wait_for(feed(peer.scope, peer.receive, peer.send), timeout=2)
            return peer.sent

        sent = asyncio.run(scenario())
        self.assertEqual(len(sent), 1)
        self.assertEqual(sent[0]['type'], 'websocket.close')
        self.assertEqual(sent[0]['code'], POLICY_VIOLATION)


class FakeConnection:
    def __init__(self):
        self.frames = asyncio.Queue()
        self.closed = False

    async def receive(self):
        return await self.frames.get()

    async def close(self):
        self.closed = True


class FakeConnector:
    def __init__(self, failures=0):
        self.failures = failures
        self.connections = []

    async def __call__(self, url):
        if self.failures:
            self.failures -= 1
            raise OSError('Connection refused')
        connection = FakeConnection()
        self.connections.append(connection)
        return connection


class SlowConnector(FakeConnector):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    async def __call__(self, url):
        await asyncio.sleep(self.delay)
        return await super().__call__(url)


class StatusFeedClientTests(SimpleTestCase):

    def test_receives_updates_and_drops_malformed_frames(self):
        updates = []

        async def scenario():
            connector = FakeConnector()
            client = StatusFeedClient('ws://test/', connector=connector, on_update=updates.append)
            await client.connect()
            self.assertTrue(client.is_connected)

            frames = connector.connections[0].frames
            for raw in ('not json', '[1, 2]', '{"type": "notification"}',
                        '{"type": "system-update", "data": {"cpu": 5}}'):
                frames.put_nowait(raw)
            await wait_until(lambda: client.data is not None)
            self.assertEqual(client.data, {'cpu': 5})
            self.assertIsNone(client.error)
            await client.close()
            self.assertTrue(connector.connections[0].closed)

        asyncio.run(scenario())
        self.assertEqual(updates, [{'cpu': 5}])

    def test_server_close_schedules_one_reconnect(self):
        async def scenario():
            connector = FakeConnector()
            client = StatusFeedClient('ws://test/', connector=connector, reconnect_delay=0.05)
            await client.connect()
            connector.connections[0].frames.put_nowait(None)

            await wait_until(lambda: client.state == ConnectionState.DISCONNECTED)
            self.assertTrue(client.reconnect_pending)
            self.assertEqual(client.connect_attempts, 1)

            await wait_until(lambda: client.is_connected)
            self.assertEqual(client.connect_attempts, 2)
            self.assertFalse(client.reconnect_pending)
            self.assertEqual(len(connector.connections), 2)
            await client.close()

        asyncio.run(scenario())

    def test_failed_connect_sets_error_and_retries(self):
        async def scenario():
            connector = FakeConnector(failures=1)
            client = StatusFeedClient('ws://test/', connector=connector, reconnect_delay=0.05)
            await client.connect()
            self.assertEqual(client.state, ConnectionState.DISCONNECTED)
            self.assertEqual(client.error, CONNECTION_ERROR)
            self.assertTrue(client.reconnect_pending)

            await wait_until(lambda: client.is_connected)
            self.assertIsNone(client.error)
            await client.close()

        asyncio.run(scenario())

    def test_manual_reconnect_cancels_pending_retry(self):
        async def scenario():
            connector = FakeConnector(failures=1)
            client = StatusFeedClient('ws://test/', connector=connector, reconnect_delay=60)
            await client.connect()
            self.assertTrue(client.reconnect_pending)

            await client.reconnect()
            self.assertTrue(client.is_connected)
            self.assertFalse(client.reconnect_pending)
            self.assertEqual(client.connect_attempts, 2)

            await client.reconnect()
            self.assertTrue(connector.connections[0].closed)
            self.assertTrue(client.is_connected)
            self.assertFalse(client.reconnect_pending)
            await client.close()

        asyncio.run(scenario())

    def test_reconnect_during_connect_keeps_one_live_socket(self):
        async def scenario():
            connector = SlowConnector(delay=0.05)
            client = StatusFeedClient('ws://test/', connector=connector, reconnect_delay=60)
            first = asyncio.create_task(client.connect())
            await asyncio.sleep(0.01)
            self.assertEqual(client.state, ConnectionState.CONNECTING)

            await client.reconnect()
            await first
            self.assertTrue(client.is_connected)
            self.assertEqual(len(connector.connections), 2)
            open_connections = [c for c in connector.connections if not c.closed]
            self.assertEqual(len(open_connections), 1)
            self.assertIs(client._connection, open_connections[0])

            await client.close()
            self.assertTrue(all(c.closed for c in connector.connections))

        asyncio.run(scenario())

    def test_failing_update_callback_keeps_connection(self):
        def explode(data):
            raise ValueError('bad consumer')

        async def scenario():
            connector = FakeConnector()
            client = StatusFeedClient('ws://test/', connector=connector, on_update=explode, reconnect_delay=60)
            await client.connect()
            frames = connector.connections[0].frames
            frames.put_nowait('{"type": "system-update", "data": {"cpu": 1}}')
            frames.put_nowait('{"type": "system-update", "data": {"cpu": 2}}')
            await wait_until(lambda: client.data == {'cpu': 2})
            self.assertTrue(client.is_connected)
            self.assertFalse(client.reconnect_pending)
            self.assertEqual(client.connect_attempts, 1)
            await client.close()

        with self.assertLogs('backend.monitoring.client', level='ERROR'):
            asyncio.run(scenario())

    def test_close_cancels_pending_retry(self):
        async def scenario():
            connector = FakeConnector(failures=1)
            client = StatusFeedClient('ws://test/', connector=connector, reconnect_delay=60)
            await client.connect()
            await client.close()
            self.assertEqual(client.state, ConnectionState.CLOSED)
            self.assertFalse(client.reconnect_pending)

            await client.connect()
            self.assertEqual(client.connect_attempts, 1)

        asyncio.run(scenario())


class SystemHealthAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_admin_gets_snapshot(self):
        self.client.authenticate_user(TestDataFactory.create_admin())
        response = self.client.get('/api/system/health/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('errorStats', response.data)
        self.assertEqual(response.data['database']['status'], 'healthy')

    def test_staff_forbidden(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/api/system/health/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
