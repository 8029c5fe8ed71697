"""FastAPI dependency injection."""

from fastapi import Header

from ragchat.config import Settings, get_settings
from ragchat.services.chat_service import TurnController, get_turn_controller
from ragchat.services.message_store import MessageStore, get_message_store


def get_settings_dep() -> Settings:
    """Get application settings."""
    return get_settings()


def get_turn_controller_dep() -> TurnController:
    """Get turn controller dependency."""
    return get_turn_controller()


def get_message_store_dep() -> MessageStore:
    """Get message store dependency."""
    return get_message_store()


def get_user_id_dep(x_user_id: str = Header(default="anonymous")) -> str:
    """Identify the caller from the ``X-User-Id`` header."""
    return x_user_id
