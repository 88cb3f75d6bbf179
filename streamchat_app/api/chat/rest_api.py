"""
RESTful Chat API Endpoints
==========================

HTTP counterpart of the socket channel, for clients that want a plain
request/response exchange or only need their history.

API Endpoints:
    - POST /chat              Send a message and receive the stored bot reply (201)
    - POST /chat?mode=push    Send a message; the reply streams over the socket (202)
    - GET  /chat              Conversation history of the caller, oldest first

All endpoints require a bearer token (see `auth.py`). Failures use the
standard error body from `api_response_utils`:

    {"success": false, "data": null, "error": "...", "error_type": "..."}

Status codes:
    400  message missing, blank or longer than the configured maximum
    401  missing or invalid token
    500  the reply could not be generated (the user message stays stored)
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required, current_user

from ...logger import log_api_request, handle_api_errors, log_execution_time
from ...utils.validation import validate_message, extract_message_text

# Create chat sub-blueprint
chat_bp = Blueprint('chat', __name__, url_prefix='/chat')

PUSH_MODE = 'push'


@chat_bp.route('', methods=['POST'])
@login_required
@handle_api_errors
@log_execution_time
def send_message():
    """Send one chat message"""
    log_api_request(request.endpoint, request.method, user_id=current_user.id)

    data = request.get_json(silent=True)
    text = validate_message(
        extract_message_text(data),
        current_app.config.get('MAX_MESSAGE_LENGTH', 1000)
    )

    if request.args.get('mode') == PUSH_MODE:
        current_app.stream_dispatcher.dispatch_detached(current_user.id, text)  # type: ignore[attr-defined]
        return jsonify({'accepted': True, 'userId': current_user.id}), 202

    bot_message = current_app.streaming_coordinator.handle_request(current_user.id, text)  # type: ignore[attr-defined]
    return jsonify(bot_message.to_dict()), 201


@chat_bp.route('', methods=['GET'])
@login_required
@handle_api_errors
def chat_history():
    """Conversation history of the caller"""
    log_api_request(request.endpoint, request.method, user_id=current_user.id)

    messages = current_app.message_storage.get_chat_history(current_user.id)  # type: ignore[attr-defined]
    return jsonify({
        'messages': [message.to_dict() for message in messages],
        'total': len(messages),
    })
