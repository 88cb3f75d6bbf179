"""
Unit Tests for per-connection stream workers
"""

import threading
import time
import unittest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from streamchat_app.core.session_directory import ConnectionHandle
from streamchat_app.core.stream_worker import ConnectionWorker, StreamDispatcher


def start_thread(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


class TestConnectionWorker(unittest.TestCase):

    def test_messages_handled_in_order(self):
        handled = []

        def handler(user_id, text):
            time.sleep(0.01)
            handled.append(text)

        worker = ConnectionWorker(ConnectionHandle.accept('sid-1'), handler, start_thread)
        worker.start()
        for i in range(5):
            self.assertTrue(worker.submit('1', f'm{i}'))
        worker.close()
        self.assertTrue(worker.join(5))
        self.assertEqual(handled, ['m0', 'm1', 'm2', 'm3', 'm4'])
        self.assertEqual(worker.processed, 5)

    def test_handler_errors_do_not_stop_worker(self):
        handled = []

        def handler(user_id, text):
            if text == 'bad':
                raise RuntimeError("boom")
            handled.append(text)

        worker = ConnectionWorker(ConnectionHandle.accept('sid-1'), handler, start_thread)
        worker.start()
        for text in ('a', 'bad', 'b'):
            worker.submit('1', text)
        worker.close()
        self.assertTrue(worker.join(5))
        self.assertEqual(handled, ['a', 'b'])

    def test_closed_worker_rejects_messages(self):
        worker = ConnectionWorker(ConnectionHandle.accept('sid-1'), lambda u, t: None, start_thread)
        worker.start()
        worker.close()
        self.assertTrue(worker.closed)
        self.assertFalse(worker.submit('1', 'late'))
        self.assertTrue(worker.join(5))


class TestStreamDispatcher(unittest.TestCase):

    def test_one_worker_per_connection(self):
        dispatcher = StreamDispatcher(lambda u, t: None, start_thread)
        first = ConnectionHandle.accept('sid-1')
        second = ConnectionHandle.accept('sid-2')

        worker = dispatcher.open(first)
        self.assertIs(dispatcher.open(first), worker)
        dispatcher.open(second)
        self.assertEqual(dispatcher.active_count(), 2)

        dispatcher.close(first)
        self.assertTrue(worker.closed)
        self.assertIsNone(dispatcher.worker_for(first))
        dispatcher.shutdown()
        self.assertEqual(dispatcher.active_count(), 0)

    def test_connections_progress_independently(self):
        release_slow = threading.Event()
        fast_done = threading.Event()

        def handler(user_id, text):
            if text == 'slow':
                release_slow.wait(5)
            else:
                fast_done.set()

        dispatcher = StreamDispatcher(handler, start_thread)
        slow, fast = ConnectionHandle.accept('sid-slow'), ConnectionHandle.accept('sid-fast')
        dispatcher.submit(slow, 'a', 'slow')
        dispatcher.submit(fast, 'b', 'fast')

        self.assertTrue(fast_done.wait(5))
        release_slow.set()
        dispatcher.shutdown()

    def test_inline_mode_runs_in_caller(self):
        calls = []
        dispatcher = StreamDispatcher(lambda u, t: calls.append((u, t, threading.current_thread())),
                                      start_thread, inline=True)
        connection = ConnectionHandle.accept('sid-1')
        self.assertIsNone(dispatcher.open(connection))
        self.assertTrue(dispatcher.submit(connection, '1', 'hi'))
        dispatcher.dispatch_detached('1', 'push')
        self.assertEqual([(u, t) for u, t, _ in calls], [('1', 'hi'), ('1', 'push')])
        self.assertTrue(all(thread is threading.current_thread() for _, _, thread in calls))

    def test_detached_dispatch_runs_in_background(self):
        done = threading.Event()
        dispatcher = StreamDispatcher(lambda u, t: done.set(), start_thread)
        dispatcher.dispatch_detached('1', 'hello')
        self.assertTrue(done.wait(5))

    def test_detached_errors_are_contained(self):
        finished = threading.Event()

        def handler(user_id, text):
            try:
                raise RuntimeError("boom")
            finally:
                finished.set()

        dispatcher = StreamDispatcher(handler, start_thread)
        dispatcher.dispatch_detached('1', 'hello')
        self.assertTrue(finished.wait(5))


if __name__ == '__main__':
    unittest.main()
