from __future__ import annotations

import logging
import threading

import numpy as np

from examguard.config import DEFAULT_CUES, CueConfig
from examguard.models import AlertKind

logger = logging.getLogger(__name__)


class _ToneCue:
    """One finite sine tone played on its own output stream."""

    def __init__(self, cue: CueConfig, sample_rate: int) -> None:
        self.frequency_hz = float(cue.frequency_hz)
        self.volume = float(cue.volume)
        self.sample_rate = sample_rate
        self.total_frames = max(int(cue.duration_s * sample_rate), 1)
        self._position = 0
        self._lock = threading.Lock()
        self._stream = None

    @property
    def playing(self) -> bool:
        with self._lock:
            return self._stream is not None and self._position < self.total_frames

    def start(self) -> None:
        import sounddevice as sd

        self._close_stream()
        with self._lock:
            self._position = 0

        def callback(outdata, frames, _time, _status):
            with self._lock:
                start = self._position
                self._position = min(start + frames, self.total_frames)
                end = self._position

            n = end - start
            t = (np.arange(start, end, dtype=np.float32)) / self.sample_rate
            wave = self.volume * np.sin(2 * np.pi * self.frequency_hz * t, dtype=np.float32)
            # short linear fade-out so the tone doesn't click when it stops
            fade = min(n, int(0.01 * self.sample_rate))
            if end == self.total_frames and fade > 0:
                wave[-fade:] *= np.linspace(1.0, 0.0, fade, dtype=np.float32)

            outdata[:] = 0
            outdata[:n, 0] = wave
            if outdata.shape[1] > 1:
                outdata[:n, 1:] = wave[:, None]
            if end >= self.total_frames:
                raise sd.CallbackStop

        stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            callback=callback,
            blocksize=0,
        )
        with self._lock:
            self._stream = stream
        stream.start()

    def _close_stream(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()

    def close(self) -> None:
        self._close_stream()


class ToneCuePlayer:
    """Plays one synthesized tone per AlertKind through sounddevice.

    Each kind gets its own stream, so different cues may overlap while
    ``is_playing`` reports the state of a single cue.
    """

    def __init__(self, cues: dict[AlertKind, CueConfig] | None = None, sample_rate: int = 44100) -> None:
        configured = dict(DEFAULT_CUES)
        configured.update(cues or {})
        self.sample_rate = int(sample_rate)
        self._cues = {kind: _ToneCue(cue, self.sample_rate) for kind, cue in configured.items()}

    def play(self, kind: AlertKind) -> None:
        self._cues[kind].start()

    def is_playing(self, kind: AlertKind) -> bool:
        return self._cues[kind].playing

    def close(self) -> None:
        for cue in self._cues.values():
            cue.close()


class SilentCuePlayer:
    """No audio output. Cues are logged and never reported as playing."""

    def __init__(self) -> None:
        self.played: list[AlertKind] = []

    def play(self, kind: AlertKind) -> None:
        self.played.append(kind)
        logger.info("cue %s (silent)", kind.value)

    def is_playing(self, kind: AlertKind) -> bool:
        return False

    def close(self) -> None:
        return None
