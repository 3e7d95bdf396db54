"""Typed access to the notification preferences."""

from __future__ import annotations

import math

from taskflow_sync.preferences.store import PreferenceStore

SOUND_ENABLED = "notif_sound_enabled"
SOUND_VOLUME = "notif_sound_volume"
EMAIL_ENABLED = "notif_email_enabled"

DEFAULT_SOUND_ENABLED = True
DEFAULT_SOUND_VOLUME = 70
DEFAULT_EMAIL_ENABLED = True


def clamp_volume(value: float) -> int:
    return int(max(0, min(100, round(value))))


class NotificationPreferences:
    """Reads fall back to defaults when a stored value is missing or has the wrong type."""

    def __init__(self, store: PreferenceStore) -> None:
        self._store = store

    @property
    def store(self) -> PreferenceStore:
        return self._store

    def _bool(self, key: str, default: bool) -> bool:
        value = self._store.get_item(key)
        return value if isinstance(value, bool) else default

    @property
    def sound_enabled(self) -> bool:
        return self._bool(SOUND_ENABLED, DEFAULT_SOUND_ENABLED)

    @sound_enabled.setter
    def sound_enabled(self, enabled: bool) -> None:
        self._store.set_item(SOUND_ENABLED, bool(enabled))

    @property
    def sound_volume(self) -> int:
        """Volume percentage, clamped to 0..100."""
        value = self._store.get_item(SOUND_VOLUME)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return DEFAULT_SOUND_VOLUME
        if not math.isfinite(value):
            return DEFAULT_SOUND_VOLUME
        return clamp_volume(value)

    @sound_volume.setter
    def sound_volume(self, volume: int) -> None:
        self._store.set_item(SOUND_VOLUME, clamp_volume(volume))

    @property
    def email_enabled(self) -> bool:
        return self._bool(EMAIL_ENABLED, DEFAULT_EMAIL_ENABLED)

    @email_enabled.setter
    def email_enabled(self, enabled: bool) -> None:
        self._store.set_item(EMAIL_ENABLED, bool(enabled))
