"""
API module for StreamChat.
Mounts the auth and chat blueprints under a single /api prefix.
"""

from flask import Blueprint

from ..auth import auth_bp
from .chat import chat_bp

# Create the main API blueprint
api_bp = Blueprint('api', __name__, url_prefix='/api')
api_bp.register_blueprint(auth_bp)
api_bp.register_blueprint(chat_bp)

__all__ = ['api_bp']
