"""
Unit Tests for client-side stream reassembly
"""

import unittest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from streamchat_app.client.stream_assembler import StreamAssembler


def chunk(text, stream_id='s1', complete=False, full_text=None):
    payload = {'text': text, 'isComplete': complete, 'streamId': stream_id, 'timestamp': '2024-01-01T00:00:00Z'}
    if complete:
        payload['fullText'] = full_text
    return payload


class TestStreamAssembler(unittest.TestCase):

    def setUp(self):
        self.partials = []
        self.assembler = StreamAssembler(user_id='1', on_partial=lambda sid, text: self.partials.append(text))

    def test_terminal_full_text_wins(self):
        self.assertIsNone(self.assembler.feed(chunk('Hello ')))
        message = self.assembler.feed(chunk('world', complete=True, full_text='Hello world'))
        self.assertEqual(message.text, 'Hello world')
        self.assertEqual(message.chunk_count, 2)
        self.assertEqual(message.to_dict()['sender'], 'bot')
        self.assertEqual(self.partials, ['Hello '])

    def test_without_full_text_buffer_is_used(self):
        self.assembler.feed(chunk('Hel'))
        self.assembler.feed(chunk('lo'))
        message = self.assembler.feed(chunk('!', complete=True))
        self.assertEqual(message.text, 'Hello!')

    def test_replayed_terminal_is_ignored(self):
        terminal = chunk('done', complete=True, full_text='done')
        self.assertIsNotNone(self.assembler.feed(terminal))
        self.assertIsNone(self.assembler.feed(terminal))
        self.assertIsNone(self.assembler.feed(chunk('late')))
        self.assertTrue(self.assembler.is_completed('s1'))

    def test_streams_are_kept_apart(self):
        self.assembler.feed(chunk('a ', stream_id='s1'))
        self.assembler.feed(chunk('b ', stream_id='s2'))
        self.assertEqual(self.assembler.partial('s1'), 'a ')
        first = self.assembler.feed(chunk('end', stream_id='s2', complete=True))
        self.assertEqual(first.text, 'b end')
        self.assertEqual(self.assembler.partial('s1'), 'a ')

    def test_reset_forgets_everything(self):
        self.assembler.feed(chunk('partial'))
        self.assembler.feed(chunk('x', stream_id='s9', complete=True, full_text='x'))
        self.assembler.reset()
        self.assertEqual(self.assembler.partial('s1'), '')
        self.assertFalse(self.assembler.is_completed('s9'))


if __name__ == '__main__':
    unittest.main()
