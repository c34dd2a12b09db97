"""Per-user bot state: encrypted credentials and pending confirmations."""

from __future__ import annotations

import json
from datetime import datetime

from pydantic import BaseModel, Field, ValidationError

from rdpanel.common.crypto import SecretBox
from rdpanel.config.constants import CONFIRMATION_TTL
from rdpanel.core.errors import ApiError
from rdpanel.core.types import utcnow
from rdpanel.observability import get_logger
from rdpanel.storage.kv import KeyValueStore

logger = get_logger(__name__)


class UserPreferences(BaseModel):
    notifications: bool = True
    auto_refresh: bool = True
    dark_mode: bool = False


class UserData(BaseModel):
    api_key: str
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    last_active: datetime = Field(default_factory=utcnow)


class ConfirmationContext(BaseModel):
    """A destructive action waiting for the user to confirm."""

    action: str
    message_id: int
    server_ids: list[str]
    timestamp: datetime = Field(default_factory=utcnow)


class BotStorage:
    """Bot state on top of a key-value store.

    User records are encrypted as a whole when a SecretBox is configured.
    Confirmations expire after CONFIRMATION_TTL seconds.
    """

    def __init__(
        self,
        store: KeyValueStore,
        secret_box: SecretBox | None = None,
        confirmation_ttl: float = CONFIRMATION_TTL,
    ):
        self.store = store
        self.secret_box = secret_box
        self.confirmation_ttl = confirmation_ttl

    @staticmethod
    def _user_key(user_id: int) -> str:
        return f"user:{user_id}"

    @staticmethod
    def _confirm_key(user_id: int) -> str:
        return f"confirm:{user_id}"

    def save_user_data(self, user_id: int, data: UserData) -> None:
        payload = data.model_dump_json()
        if self.secret_box is not None:
            payload = self.secret_box.encrypt(payload)
        self.store.set(self._user_key(user_id), payload)

    def get_user_data(self, user_id: int) -> UserData | None:
        """Return the user's record, or None if absent or unreadable."""
        payload = self.store.get(self._user_key(user_id))
        if not payload:
            return None

        try:
            if self.secret_box is not None:
                payload = self.secret_box.decrypt(payload)
            return UserData.model_validate(json.loads(payload))
        except (ApiError, ValueError, ValidationError) as e:
            logger.error(
                "Error reading user data", extra={"user_id": user_id, "error": str(e)}
            )
            return None

    def delete_user_data(self, user_id: int) -> None:
        self.store.delete(self._user_key(user_id))

    def save_confirmation(self, user_id: int, context: ConfirmationContext) -> None:
        self.store.set(
            self._confirm_key(user_id),
            context.model_dump(mode="json"),
            ttl=self.confirmation_ttl,
        )

    def get_confirmation(self, user_id: int) -> ConfirmationContext | None:
        data = self.store.get(self._confirm_key(user_id))
        if data is None:
            return None
        try:
            return ConfirmationContext.model_validate(data)
        except ValidationError:
            logger.error("Error parsing confirmation context", extra={"user_id": user_id})
            return None

    def clear_confirmation(self, user_id: int) -> None:
        self.store.delete(self._confirm_key(user_id))
