"""
AlertDispatcher: maps classification/detection results to alert kinds and
fires their audio cues.

Debounce is per kind and tied to playback: a cue is only played when the same
cue is not already playing. Different kinds may play at the same time.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Sequence, Union

from examguard.models import AlertKind, ClassificationResult, CooldownState, CuePlayer, DetectedObject, Label

logger = logging.getLogger(__name__)

Evaluable = Union[ClassificationResult, Sequence[DetectedObject]]

_POSTURE_ALERTS: dict[Label, AlertKind] = {
    Label.HEAD_LEFT: AlertKind.NO_CHEATING_ALLOWED,
    Label.HEAD_RIGHT: AlertKind.NO_CHEATING_ALLOWED,
    Label.STANDING_UP: AlertKind.NO_MOVEMENT_ALLOWED,
    Label.ABSENT: AlertKind.NO_MOVEMENT_ALLOWED,
}


class AlertDispatcher:
    """
    Parameters
    ----------
    player : CuePlayer
        Owns the cues; addressed by AlertKind only.
    confidence_threshold : float
        Posture alerts need a confidence strictly above this value.
    phone_class : str
        Detector class name that raises ``phone_detected``.
    phone_min_score : float
        Minimum detector score for the phone alert. 0.0 means any score.
    clock : callable
        Timestamp source for ``CooldownState.last_fired_at``.
    """

    def __init__(
        self,
        player: CuePlayer,
        confidence_threshold: float = 0.8,
        phone_class: str = "cell phone",
        phone_min_score: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.player = player
        self.confidence_threshold = confidence_threshold
        self.phone_class = phone_class
        self.phone_min_score = phone_min_score
        self._clock = clock
        self._cooldowns: dict[AlertKind, CooldownState] = {}
        self._listeners: list[Callable[[AlertKind], None]] = []

    # ------------------------------------------------------------------
    def evaluate(self, result: Evaluable) -> AlertKind | None:
        """Return the alert kind a result calls for, or None."""
        if isinstance(result, ClassificationResult):
            if result.confidence <= self.confidence_threshold:
                return None
            return _POSTURE_ALERTS.get(result.label)

        for obj in result:
            if obj.cls == self.phone_class and obj.score >= self.phone_min_score:
                return AlertKind.PHONE_DETECTED
        return None

    def dispatch(self, result: Evaluable) -> AlertKind | None:
        """Evaluate ``result`` and fire its alert. Returns the kind actually played."""
        kind = self.evaluate(result)
        if kind is None:
            return None
        return kind if self.fire(kind) else None

    def fire(self, kind: AlertKind) -> bool:
        if self.player.is_playing(kind):
            logger.debug("alert %s suppressed: cue still playing", kind.value)
            return False
        self._emit(kind)
        return True

    def announce(self, kind: AlertKind) -> None:
        """Lifecycle cue: always played (restarting it if still sounding), never debounced."""
        self._emit(kind)

    def _emit(self, kind: AlertKind) -> None:
        self.player.play(kind)
        self._cooldowns[kind] = CooldownState(last_fired_at=self._clock())
        logger.info("alert fired: %s", kind.value)
        for listener in self._listeners:
            listener(kind)

    def add_listener(self, listener: Callable[[AlertKind], None]) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    @property
    def cooldowns(self) -> dict[AlertKind, CooldownState]:
        return {k: CooldownState(v.last_fired_at) for k, v in self._cooldowns.items()}

    def reset(self) -> None:
        self._cooldowns.clear()
