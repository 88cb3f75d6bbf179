"""
Authentication for StreamChat.

The service recognizes a single configured credential pair. A successful
login returns a signed access token (Flask-JWT-Extended) whose subject is the
configured user id. The token is then presented:

- on HTTP routes as ``Authorization: Bearer <token>``; Flask-Login's request
  loader turns it into ``current_user`` so views use ``@login_required``;
- on the socket handshake as ``auth.token``; see `verify_token`.
"""

import time
from collections import defaultdict
from threading import Lock
from typing import Optional

from flask import Blueprint, current_app, request, jsonify
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_login import login_required, current_user
from jwt.exceptions import PyJWTError
from werkzeug.security import check_password_hash, generate_password_hash

from .logger import log_user_action, log_warning, log_api_request
from .models import User
from .utils.api_response_utils import format_error_response
from .utils.error_handling import AuthenticationError, ValidationError, ErrorCode

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')

ANONYMOUS_TOKEN = 'no-token'


class LoginAttemptTracker:
    """Failed-login counter per client, used to slow down password guessing"""

    def __init__(self, max_attempts: int = 5, window: int = 300):
        self.max_attempts = max_attempts
        self.window = window
        self._attempts = defaultdict(list)
        self._lock = Lock()

    def _recent(self, identifier: str, now: float):
        self._attempts[identifier] = [
            t for t in self._attempts[identifier] if now - t < self.window
        ]
        return self._attempts[identifier]

    def is_blocked(self, identifier: str) -> bool:
        with self._lock:
            return len(self._recent(identifier, time.time())) >= self.max_attempts

    def record_failure(self, identifier: str):
        with self._lock:
            now = time.time()
            self._recent(identifier, now).append(now)

    def reset(self, identifier: str):
        with self._lock:
            self._attempts.pop(identifier, None)


def get_client_identifier() -> str:
    """Get client identifier for rate limiting (IP address)"""
    client_ip = request.environ.get('HTTP_X_FORWARDED_FOR', request.environ.get('REMOTE_ADDR', '127.0.0.1'))
    if client_ip:
        return client_ip.split(',')[0].strip()
    return '127.0.0.1'


def _auth_state(app=None):
    app = app or current_app
    state = app.extensions.get('streamchat_auth')
    if state is None:
        state = {
            'password_hash': generate_password_hash(app.config['AUTH_PASSWORD']),
            'attempts': LoginAttemptTracker(
                max_attempts=app.config.get('AUTH_MAX_FAILED_ATTEMPTS', 5),
                window=app.config.get('AUTH_LOCKOUT_WINDOW', 300),
            ),
        }
        app.extensions['streamchat_auth'] = state
    return state


def init_auth(app, login_manager):
    """Wire the token-based request loader into Flask-Login"""
    _auth_state(app)

    @login_manager.request_loader
    def load_user_from_request(req):
        header = req.headers.get('Authorization', '')
        if not header.lower().startswith('bearer '):
            return None
        try:
            return verify_token(header[7:].strip())
        except AuthenticationError as e:
            log_warning(f"Rejected bearer token on {req.path}: {e.message}")
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return format_error_response('Authentication required', 'authentication_error', 401)


def verify_token(token: Optional[str]) -> User:
    """
    Decode and check an access token.

    Returns:
        The user the token was issued to.

    Raises:
        AuthenticationError: the token is missing, malformed, expired,
            badly signed, or names a user this service does not know.
    """
    if not token or token == ANONYMOUS_TOKEN:
        raise AuthenticationError("No access token presented")
    try:
        claims = decode_token(token)
    except (JWTExtendedException, PyJWTError) as e:
        raise AuthenticationError(f"Invalid access token: {type(e).__name__}", cause=e)

    user_id = str(claims.get('sub', ''))
    if user_id != str(current_app.config['AUTH_USER_ID']):
        raise AuthenticationError(f"Token subject {user_id!r} is not a known user")
    return User(user_id, claims.get('username') or current_app.config['AUTH_USERNAME'])


def issue_token(user: User) -> str:
    return create_access_token(identity=user.id, additional_claims={'username': user.username})


@auth_bp.route('/login', methods=['POST'])
def login():
    """Exchange the configured credentials for an access token"""
    log_api_request(request.endpoint, request.method, ip_address=request.remote_addr)

    data = request.get_json(silent=True) or {}
    username = data.get('username')
    password = data.get('password')
    if not isinstance(username, str) or not username or not isinstance(password, str) or not password:
        raise ValidationError("Username and password are required", code=ErrorCode.MISSING_FIELD)

    state = _auth_state()
    client_id = get_client_identifier()
    if state['attempts'].is_blocked(client_id):
        log_warning(f"Login blocked for {client_id}: too many failed attempts")
        return format_error_response('Too many failed login attempts. Please try again later.',
                                     'rate_limit_exceeded', 429)

    config = current_app.config
    if username != config['AUTH_USERNAME'] or not check_password_hash(state['password_hash'], password):
        state['attempts'].record_failure(client_id)
        log_warning(f"Failed login attempt for user: {username}")
        raise AuthenticationError(f"Invalid credentials for {username}", user_message='Invalid credentials')

    state['attempts'].reset(client_id)
    user = User(config['AUTH_USER_ID'], config['AUTH_USERNAME'])
    log_user_action(user.id, 'login')
    return jsonify({
        'access_token': issue_token(user),
        'user': user.to_dict(),
    })


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    """Who the presented token belongs to"""
    return jsonify({'user': current_user.to_dict()})
