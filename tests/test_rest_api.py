"""
Integration tests for the HTTP surface: login, chat and health
"""

import unittest
from unittest.mock import patch

from chat_test_base import ChatAppTestCase
from streamchat_app.core.generation import FALLBACK_SUFFIX
from streamchat_app.models import ChatMessage


class TestAuthApi(ChatAppTestCase):

    def test_login_returns_token_and_user(self):
        response = self.client.post('/api/auth/login', json={'username': 'admin', 'password': 'password'})
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertTrue(data['access_token'])
        self.assertEqual(data['user'], {'id': '1', 'username': 'admin'})

    def test_wrong_password_rejected(self):
        response = self.client.post('/api/auth/login', json={'username': 'admin', 'password': 'nope'})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()['error'], 'Invalid credentials')

    def test_missing_fields_rejected(self):
        response = self.client.post('/api/auth/login', json={'username': 'admin'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['error_type'], 'validation_error')

    def test_repeated_failures_are_rate_limited(self):
        for _ in range(5):
            self.client.post('/api/auth/login', json={'username': 'admin', 'password': 'bad'})
        response = self.client.post('/api/auth/login', json={'username': 'admin', 'password': 'password'})
        self.assertEqual(response.status_code, 429)

    def test_me_returns_token_owner(self):
        response = self.client.get('/api/auth/me', headers=self.auth_headers())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['user']['id'], '1')

    def test_garbage_token_rejected(self):
        response = self.client.get('/api/auth/me', headers={'Authorization': 'Bearer not-a-token'})
        self.assertEqual(response.status_code, 401)


class TestChatApi(ChatAppTestCase):

    def setUp(self):
        super().setUp()
        self.headers = self.auth_headers()

    def test_requires_token(self):
        response = self.client.post('/api/chat', json={'message': 'Hello'})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()['error'], 'Authentication required')
        self.assertEqual(ChatMessage.query.count(), 0)

    def test_send_message_returns_bot_reply(self):
        response = self.client.post('/api/chat', json={'message': 'What is Python?'}, headers=self.headers)
        self.assertEqual(response.status_code, 201)
        data = response.get_json()
        self.assertEqual(data['sender'], 'bot')
        self.assertEqual(data['userId'], '1')
        self.assertIn('What is Python?', data['text'])
        self.assertIn(FALLBACK_SUFFIX, data['text'])
        self.assertEqual(data['response'], data['text'])

        senders = [m.sender for m in self.app.message_storage.get_chat_history('1')]
        self.assertEqual(senders, ['user', 'bot'])

    def test_blank_message_rejected(self):
        response = self.client.post('/api/chat', json={'message': '   '}, headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['error'], 'Message cannot be empty')
        self.assertEqual(ChatMessage.query.count(), 0)

    def test_too_long_message_rejected(self):
        response = self.client.post('/api/chat', json={'message': 'x' * 1001}, headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()['error'], 'Message too long. Maximum 1000 characters allowed.')
        self.assertEqual(ChatMessage.query.count(), 0)

    def test_message_at_limit_accepted(self):
        response = self.client.post('/api/chat', json={'message': 'x' * 1000}, headers=self.headers)
        self.assertEqual(response.status_code, 201)

    def test_generation_failure_is_500_and_keeps_user_message(self):
        with patch.object(self.app.generation_adapter, 'generate', side_effect=RuntimeError("backend exploded")):
            response = self.client.post('/api/chat', json={'message': 'Hello'}, headers=self.headers)
        self.assertEqual(response.status_code, 500)
        body = response.get_json()
        self.assertEqual(body['error'], 'Failed to generate AI response')
        self.assertNotIn('exploded', response.get_data(as_text=True))
        self.assertEqual([m.sender for m in ChatMessage.query.all()], ['user'])

    def test_history_lists_conversation(self):
        self.client.post('/api/chat', json={'message': 'one'}, headers=self.headers)
        self.client.post('/api/chat', json={'message': 'two'}, headers=self.headers)
        response = self.client.get('/api/chat', headers=self.headers)
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data['total'], 4)
        self.assertEqual([m['sender'] for m in data['messages']], ['user', 'bot', 'user', 'bot'])
        self.assertEqual(data['messages'][0]['text'], 'one')

    def test_push_mode_accepts_and_stores(self):
        response = self.client.post('/api/chat?mode=push', json={'message': 'Hello'}, headers=self.headers)
        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.get_json(), {'accepted': True, 'userId': '1'})
        # Inline dispatch in tests: the pipeline has already run, nobody was connected
        self.assertEqual(self.app.message_storage.count_messages('1'), 2)


class TestHealth(ChatAppTestCase):

    def test_health_reports_services(self):
        for path in ('/health', '/api/health'):
            response = self.client.get(path)
            self.assertEqual(response.status_code, 200)
            data = response.get_json()
            self.assertEqual(data['status'], 'ok')
            self.assertTrue(data['time'].endswith('Z'))
            self.assertGreaterEqual(data['uptime'], 0)
            self.assertTrue(data['services']['database'])
            self.assertEqual(data['services']['ai'], {'available': False, 'gemini': False, 'fallback': True})
            self.assertEqual(data['services']['connections'], 0)


if __name__ == '__main__':
    unittest.main()
