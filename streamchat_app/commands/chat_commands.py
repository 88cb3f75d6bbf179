"""
Chat CLI commands
"""

import threading

import click
import requests
from flask import current_app

from ..logger import log_error, log_info


def register_chat_commands(app):
    """Register chat history and interactive client commands"""

    @app.cli.command('chat-history')
    @click.argument('user_id')
    @click.option('--limit', default=0, type=int, help='Only show the newest N messages.')
    def chat_history(user_id, limit):
        """Prints the stored conversation of USER_ID, oldest first."""
        storage = current_app.message_storage  # type: ignore[attr-defined]
        if limit > 0:
            messages = storage.get_recent_messages(user_id, limit=limit)
        else:
            messages = storage.get_chat_history(user_id)

        if not messages:
            click.echo(f"No messages stored for user {user_id}.")
            return

        for message in messages:
            stamp = message.created_at.strftime('%Y-%m-%d %H:%M:%S')
            click.echo(f"[{stamp}] {message.sender}: {message.text}")
        click.echo(f"{len(messages)} message(s)")

    @app.cli.command('chat-client')
    @click.option('--url', default=None, help='Server base URL (defaults to HOST/PORT from config).')
    @click.option('--username', default=None, help='Login name (defaults to AUTH_USERNAME).')
    @click.option('--password', default=None, help='Login password (defaults to AUTH_PASSWORD).')
    @click.option('--anonymous', is_flag=True, help='Connect without logging in (debug servers only).')
    def chat_client(url, username, password, anonymous):
        """Chats with a running server from the terminal. Ctrl+D quits."""
        from ..client import ConnectionLifecycleManager
        from ..config import Config

        config = current_app.config
        base_url = (url or f"http://{config['HOST']}:{config['PORT']}").rstrip('/')
        token, user_id = None, config['AUTH_USER_ID']

        if not anonymous:
            try:
                token, user_id = _login(base_url,
                                        username or config['AUTH_USERNAME'],
                                        password or config['AUTH_PASSWORD'])
            except (requests.RequestException, ValueError) as e:
                click.echo(f"Error: login failed: {e}", err=True)
                return

        reply_done = threading.Event()

        def on_message(message):
            click.echo(f"bot> {message.text}")
            reply_done.set()

        def on_error(error):
            click.echo(f"[!] {error}", err=True)
            reply_done.set()

        manager = ConnectionLifecycleManager.from_config(
            Config, base_url, user_id, token=token,
            on_message=on_message, on_error=on_error,
        )
        if not manager.start():
            click.echo(f"Error: could not connect to {base_url}", err=True)
            manager.disconnect()
            return

        log_info(f"Interactive chat client connected to {base_url} as {user_id}")
        click.echo(f"Connected to {base_url} as user {user_id}. Type a message and press Enter.")
        try:
            while True:
                try:
                    line = input('you> ')
                except EOFError:
                    break
                if not line.strip():
                    continue
                reply_done.clear()
                if not manager.send_message(line):
                    click.echo('[!] Not connected; retrying in the background.', err=True)
                    continue
                reply_done.wait(timeout=config['GEMINI_TIMEOUT'] + 5)
        except KeyboardInterrupt:
            pass
        finally:
            manager.disconnect()
            click.echo('Bye.')


def _login(base_url, username, password):
    """Exchange credentials for ``(access_token, user_id)``"""
    response = requests.post(
        f"{base_url}/api/auth/login",
        json={'username': username, 'password': password},
        timeout=10,
    )
    if response.status_code != 200:
        try:
            error = response.json().get('error', response.text)
        except ValueError:
            error = response.text
        log_error(f"Login to {base_url} rejected ({response.status_code}): {error}")
        raise ValueError(error)
    data = response.json()
    return data['access_token'], str(data['user']['id'])
