"""
Unit Tests for the client Connection Lifecycle Manager
"""

import unittest
import sys
from pathlib import Path

import socketio

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from streamchat_app.client.connection_manager import (
    ConnectionLifecycleManager, ConnectionState,
    SESSION_EXPIRED_MESSAGE, ATTEMPTS_EXHAUSTED_MESSAGE,
)


class FakeSocketClient:
    """Stand-in for socketio.Client driven by a scripted outcome"""

    def __init__(self, outcome='ok'):
        self.outcome = outcome
        self.handlers = {}
        self.emitted = []
        self.connect_kwargs = None
        self.connected = False

    def on(self, event, handler, namespace=None):
        self.handlers[event] = handler

    def connect(self, url, **kwargs):
        self.connect_kwargs = dict(kwargs, url=url)
        if self.outcome == 'auth':
            self.handlers['connect_error']({'message': 'authentication failed'})
            raise socketio.exceptions.ConnectionError('One or more namespaces failed to connect')
        if self.outcome == 'down':
            raise socketio.exceptions.ConnectionError('Connection refused by the server')
        self.connected = True
        self.handlers['connect']()

    def emit(self, event, data=None, namespace=None):
        self.emitted.append((event, data))

    def disconnect(self):
        self.connected = False
        self.handlers['disconnect']('client disconnect')

    # server-side actions
    def drop(self, reason='transport close'):
        self.connected = False
        self.handlers['disconnect'](reason)

    def push(self, event, payload):
        self.handlers[event](payload)


class FakeTimer:
    def __init__(self, delay, function):
        self.delay = delay
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


class ConnectionManagerTestCase(unittest.TestCase):

    def setUp(self):
        self.outcomes = []
        self.clients = []
        self.timers = []
        self.messages = []
        self.errors = []
        self.states = []

    def client_factory(self):
        client = FakeSocketClient(self.outcomes.pop(0) if self.outcomes else 'ok')
        self.clients.append(client)
        return client

    def timer_factory(self, delay, function):
        timer = FakeTimer(delay, function)
        self.timers.append(timer)
        return timer

    def manager(self, token='tok', **kwargs):
        kwargs.setdefault('max_attempts', 3)
        kwargs.setdefault('rejoin_interval', 3600)
        manager = ConnectionLifecycleManager(
            'http://localhost:3001/', '1', token=token,
            on_message=self.messages.append,
            on_error=self.errors.append,
            on_state_change=self.states.append,
            client_factory=self.client_factory,
            timer_factory=self.timer_factory,
            **kwargs
        )
        self.addCleanup(manager.disconnect)
        return manager

    def pending_timers(self):
        return [t for t in self.timers if not t.cancelled]


class TestConnect(ConnectionManagerTestCase):

    def test_connect_joins_with_token(self):
        manager = self.manager()
        self.assertTrue(manager.connect())
        client = self.clients[0]

        self.assertEqual(manager.state, ConnectionState.CONNECTED)
        self.assertEqual(self.states, [ConnectionState.CONNECTING, ConnectionState.CONNECTED])
        self.assertEqual(client.connect_kwargs['url'], 'http://localhost:3001')
        self.assertEqual(client.connect_kwargs['namespaces'], ['/chat'])
        self.assertEqual(client.connect_kwargs['auth'], {'token': 'tok'})
        self.assertEqual(client.connect_kwargs['headers'], {'Authorization': 'Bearer tok'})
        self.assertEqual(client.connect_kwargs['wait_timeout'], 10.0)
        self.assertEqual(client.emitted, [('join', '1')])
        self.assertEqual(manager.attempts, 0)

    def test_anonymous_connect_sends_placeholder(self):
        manager = self.manager(token=None)
        manager.connect()
        self.assertEqual(self.clients[0].connect_kwargs['auth'], {'token': 'no-token'})
        self.assertEqual(self.clients[0].connect_kwargs['headers'], {})

    def test_failed_attempt_schedules_retry(self):
        self.outcomes = ['down']
        manager = self.manager()
        self.assertFalse(manager.connect())
        self.assertEqual(manager.state, ConnectionState.RECONNECTING)
        self.assertEqual(self.pending_timers()[0].delay, 2.0)

        self.pending_timers()[0].fire()
        self.assertEqual(manager.state, ConnectionState.CONNECTED)
        self.assertEqual(len(self.clients), 2)

    def test_attempts_are_capped(self):
        self.outcomes = ['down', 'down', 'down', 'down']
        manager = self.manager()
        manager.connect()
        while self.timers and not self.timers[-1].cancelled and manager.state == ConnectionState.RECONNECTING:
            self.timers[-1].fire()

        self.assertEqual(len(self.clients), 3)
        self.assertEqual(manager.state, ConnectionState.ERROR)
        self.assertEqual(manager.last_error, ATTEMPTS_EXHAUSTED_MESSAGE)
        self.assertFalse(manager.connect())
        self.assertEqual(len(self.clients), 3)

        manager.reconnect()
        self.assertEqual(len(self.clients), 4)

    def test_auth_failure_expires_session(self):
        self.outcomes = ['auth']
        manager = self.manager()
        self.assertFalse(manager.connect())

        self.assertEqual(manager.state, ConnectionState.ERROR)
        self.assertEqual(manager.last_error, SESSION_EXPIRED_MESSAGE)
        self.assertIsNone(manager.token)
        self.assertEqual(self.pending_timers(), [])
        self.assertIn(SESSION_EXPIRED_MESSAGE, self.errors)

        self.assertFalse(manager.connect())
        self.assertEqual(len(self.clients), 1)

        manager.set_token('fresh')
        self.assertTrue(manager.connect())
        self.assertEqual(self.clients[-1].connect_kwargs['auth'], {'token': 'fresh'})


class TestConnectedLifecycle(ConnectionManagerTestCase):

    def setUp(self):
        super().setUp()
        self.mgr = self.manager()
        self.mgr.connect()
        self.client = self.clients[0]

    def test_server_drop_schedules_reconnect(self):
        self.client.push('stream-chunk', {'text': 'half ', 'isComplete': False, 'streamId': 's1'})
        self.client.drop()

        self.assertEqual(self.mgr.state, ConnectionState.RECONNECTING)
        self.assertEqual(self.mgr.assembler.partial('s1'), '')
        self.assertEqual(self.pending_timers()[0].delay, 2.0)

        self.pending_timers()[0].fire()
        self.assertEqual(self.mgr.state, ConnectionState.CONNECTED)
        self.assertEqual(self.clients[-1].emitted, [('join', '1')])

    def test_local_disconnect_does_not_reconnect(self):
        self.mgr.disconnect()
        self.assertEqual(self.mgr.state, ConnectionState.DISCONNECTED)
        self.assertEqual(self.pending_timers(), [])

    def test_stream_chunks_become_messages(self):
        self.client.push('stream-chunk', {'text': 'Hello ', 'isComplete': False, 'streamId': 's1'})
        terminal = {'text': 'world', 'isComplete': True, 'streamId': 's1', 'fullText': 'Hello world'}
        self.client.push('stream-chunk', terminal)
        self.client.push('stream-chunk', terminal)

        self.assertEqual([m.text for m in self.messages], ['Hello world'])

    def test_send_message_rejoins_first(self):
        self.client.emitted.clear()
        self.assertTrue(self.mgr.send_message('Hi'))
        self.assertEqual(self.client.emitted, [('join', '1'), ('message', {'message': 'Hi'})])

    def test_send_message_when_disconnected(self):
        self.mgr.disconnect()
        self.assertFalse(self.mgr.send_message('Hi'))

    def test_server_error_event_is_reported_only(self):
        self.client.push('error', {'message': 'User not in any room. Please reconnect.'})
        self.assertEqual(self.errors, ['User not in any room. Please reconnect.'])
        self.assertEqual(self.mgr.state, ConnectionState.CONNECTED)

    def test_rejoin(self):
        self.client.emitted.clear()
        self.assertTrue(self.mgr.rejoin())
        self.assertEqual(self.client.emitted, [('join', '1')])

    def test_foreground_reconnects_only_when_disconnected(self):
        self.mgr.on_foreground()
        self.assertEqual(self.timers, [])

        self.mgr.disconnect()
        self.mgr.on_foreground()
        self.assertEqual(self.timers[-1].delay, 1.0)
        self.timers[-1].fire()
        self.assertEqual(self.mgr.state, ConnectionState.CONNECTED)


if __name__ == '__main__':
    unittest.main()
