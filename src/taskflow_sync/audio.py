"""Fire-and-forget playback of the notification alert sound."""

from __future__ import annotations

import logging
import wave
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from taskflow_sync.errors import AudioPlaybackError
from taskflow_sync.preferences.notifications import NotificationPreferences

if TYPE_CHECKING:
    import numpy as np

DEFAULT_ALERT_SOUND = Path("sounds/notify.wav")

logger = logging.getLogger(__name__)


class AudioPlayer(Protocol):
    """Starts playback of an asset and returns without waiting for it."""

    def play(self, asset: Path, volume: float) -> None: ...


class SoundDevicePlayer:
    """Plays 16-bit PCM WAV assets through PortAudio with sounddevice.

    numpy and sounddevice are imported on first use, so the package imports
    fine on machines without an audio stack; playback then fails inside
    AudioAlertTrigger, which swallows it.
    """

    def __init__(self) -> None:
        self._decoded: dict[Path, tuple[np.ndarray, int]] = {}

    def _decode(self, asset: Path) -> tuple[np.ndarray, int]:
        """Return (frames, sample_rate). Frames have shape (n, channels)."""
        import numpy as np

        decoded = self._decoded.get(asset)
        if decoded is None:
            with wave.open(str(asset), "rb") as wav:
                if wav.getsampwidth() != 2:
                    raise AudioPlaybackError(f"{asset} is not 16-bit PCM")
                channels = wav.getnchannels()
                raw = wav.readframes(wav.getnframes())
                sample_rate = wav.getframerate()
            # WAV samples are little-endian; drop any trailing partial frame
            samples = np.frombuffer(raw[: len(raw) - len(raw) % 2], dtype="<i2")
            samples = samples[: len(samples) - len(samples) % channels]
            decoded = (samples.reshape(-1, channels), sample_rate)
            self._decoded[asset] = decoded
        return decoded

    def play(self, asset: Path, volume: float) -> None:
        import numpy as np
        import sounddevice as sd

        frames, sample_rate = self._decode(asset)
        scaled = frames.astype(np.float32) * np.float32(volume / 32768)
        # sd.play returns immediately; we never call sd.wait()
        sd.play(scaled, sample_rate)


class AudioAlertTrigger:
    """Plays the one fixed alert asset. Never raises, never retries."""

    def __init__(
        self,
        asset: str | Path = DEFAULT_ALERT_SOUND,
        player: AudioPlayer | None = None,
    ) -> None:
        self._asset = Path(asset)
        self._player = player if player is not None else SoundDevicePlayer()

    @property
    def asset(self) -> Path:
        return self._asset

    def play(self, volume: float) -> bool:
        """Attempt playback at volume in [0, 1]. Returns False if it failed."""
        try:
            level = max(0.0, min(1.0, float(volume)))
            self._player.play(self._asset, level)
        except Exception as exc:
            error = AudioPlaybackError(f"cannot play {self._asset}: {exc}")
            logger.debug("%s", error)
            return False
        return True

    def preview(self, preferences: NotificationPreferences) -> bool:
        """Play at the stored volume, regardless of the sound-enabled switch."""
        return self.play(preferences.sound_volume / 100)


__all__ = [
    "DEFAULT_ALERT_SOUND",
    "AudioAlertTrigger",
    "AudioPlayer",
    "SoundDevicePlayer",
]
