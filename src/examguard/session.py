"""
ProctorSession: owns the test lifecycle

    Idle -> Training(label, progress) -> Idle | Ready
    Idle | Ready -> Testing(remaining) -> ... -> Testing(0) -> Finished
    any -> Idle (reset)

plus the countdown timer and the two frame samplers. Sampling results reach
the alert dispatcher only while the session is Testing; outside a test they
only update the live display state.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import numpy as np

from examguard.adapters import ObjectDetectorAdapter, PostureClassifierAdapter
from examguard.config import MonitorConfig
from examguard.dispatcher import AlertDispatcher
from examguard.errors import CameraUnavailableError, InvalidTransitionError, ModelInferenceError, NotReadyError
from examguard.models import (
    AlertKind,
    ClassificationResult,
    DetectedObject,
    FrameSource,
    Label,
    RenderSurface,
    SessionPhase,
    SessionState,
)
from examguard.sampler import FrameSampler
from examguard.store import ModelStore

logger = logging.getLogger(__name__)


@dataclass
class SessionStats:
    posture_ticks: int = 0
    detection_ticks: int = 0
    skipped_ticks: int = 0
    inference_failures: int = 0
    discarded_results: int = 0
    alerts: Counter = field(default_factory=Counter)

    def to_dict(self) -> dict:
        return {
            "posture_ticks": self.posture_ticks,
            "detection_ticks": self.detection_ticks,
            "skipped_ticks": self.skipped_ticks,
            "inference_failures": self.inference_failures,
            "discarded_results": self.discarded_results,
            "alerts": {kind.value: self.alerts.get(kind, 0) for kind in AlertKind},
        }


class ProctorSession:
    def __init__(
        self,
        video: FrameSource,
        classifier: PostureClassifierAdapter,
        detector: ObjectDetectorAdapter,
        dispatcher: AlertDispatcher,
        config: MonitorConfig | None = None,
        render: RenderSurface | None = None,
        store: ModelStore | None = None,
        on_state_change: Callable[[SessionState], None] | None = None,
    ) -> None:
        self.video = video
        self.classifier = classifier
        self.detector = detector
        self.dispatcher = dispatcher
        self.config = config or MonitorConfig()
        self.render = render
        self.store = store or ModelStore()
        self.on_state_change = on_state_change

        self.posture_sampler = FrameSampler("posture")
        self.detection_sampler = FrameSampler("detection")

        self._state = SessionState.idle()
        self._countdown: asyncio.Task | None = None
        self._finished: asyncio.Event | None = None
        self._train_token: object | None = None

        self.current_behavior: Label | None = None
        self.current_detections: list[DetectedObject] = []
        self.stats = SessionStats()

        dispatcher.add_listener(self._count_alert)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    def _set_state(self, state: SessionState) -> None:
        previous = self._state
        self._state = state
        if previous.phase is not state.phase:
            logger.info("session state %s -> %s", previous, state)
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _settled_state(self) -> SessionState:
        trained = self.classifier.trained_labels()
        if trained and all(label in trained for label in self.config.required_labels):
            return SessionState.ready()
        return SessionState.idle()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def train(self, label: Label) -> None:
        """Collect ``examples_per_label`` examples of ``label`` from the video source."""
        label = Label(label)
        if self.phase not in (SessionPhase.IDLE, SessionPhase.READY):
            raise InvalidTransitionError(f"Cannot train while {self._state}")

        total = self.config.examples_per_label
        delay_s = self.config.training_interval_ms / 1000.0
        # replaced by reset() or a newer train(); a stale run stops writing state
        self._train_token = token = object()
        self._set_state(SessionState.training(label, 0))
        logger.info("[ %s ] is training...", label.value)

        try:
            for i in range(total):
                if self._train_token is not token:
                    logger.info("[ %s ] training aborted at %d/%d", label.value, i, total)
                    return

                frame = self.video.read() if self.video.ready else None
                if frame is None:
                    raise CameraUnavailableError("No frame available from the video source")

                await self.classifier.add_example(frame, label)
                if self._train_token is not token:
                    return

                self._set_state(SessionState.training(label, i + 1))
                logger.debug("[ %s ] progress %.0f%%", label.value, (i + 1) / total * 100)
                await asyncio.sleep(delay_s)
            logger.info("[ %s ] training complete.", label.value)
        finally:
            # success, failure or cancellation all land in Idle or Ready
            if self._train_token is token:
                self._train_token = None
                self._set_state(self._settled_state())

    def start_test(self, duration_minutes: float) -> None:
        if self.phase not in (SessionPhase.IDLE, SessionPhase.READY):
            raise InvalidTransitionError(f"Cannot start a test while {self._state}")
        if not self.classifier.has_dataset:
            raise NotReadyError("No classifier dataset loaded; train labels or load a dataset first")
        if not self.video.is_open:
            raise CameraUnavailableError("Video source is not available")
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be > 0")

        remaining = max(int(round(duration_minutes * 60)), 1)
        self.dispatcher.reset()
        self.stats = SessionStats()
        self._finished = asyncio.Event()
        self._set_state(SessionState.testing(remaining))
        self.dispatcher.announce(AlertKind.TEST_STARTED)

        self._countdown = asyncio.get_running_loop().create_task(self._run_countdown(), name="countdown")
        self._start_samplers()

    def reset(self) -> None:
        """Return to Idle from any state, stopping every timer and sampler."""
        self._stop_samplers()
        self._cancel_countdown()
        self._train_token = None
        self.dispatcher.reset()
        self.current_behavior = None
        self.current_detections = []
        self._set_state(SessionState.idle())
        if self._finished is not None:
            self._finished.set()

    def start_preview(self) -> None:
        """Sample for live display only; results never alert outside a test."""
        self._start_samplers()

    def stop_preview(self) -> None:
        if self.phase is not SessionPhase.TESTING:
            self._stop_samplers()

    async def wait_finished(self) -> SessionState:
        """Wait until the running test finishes or the session is reset."""
        if self._finished is not None:
            await self._finished.wait()
        return self._state

    def load_dataset(self, path: Path) -> None:
        if self.phase in (SessionPhase.TRAINING, SessionPhase.TESTING):
            raise InvalidTransitionError(f"Cannot replace the dataset while {self._state}")
        self.store.import_dataset(self.classifier.classifier, path)
        if self.phase in (SessionPhase.IDLE, SessionPhase.READY):
            self._set_state(self._settled_state())

    def save_dataset(self, path: Path) -> Path:
        return self.store.export_dataset(self.classifier.classifier, path)

    async def shutdown(self) -> None:
        self.reset()
        await self.posture_sampler.drain()
        await self.detection_sampler.drain()

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    async def _run_countdown(self) -> None:
        while True:
            await asyncio.sleep(self.config.countdown_tick_s)
            state = self._state
            if state.phase is not SessionPhase.TESTING:
                return
            remaining = (state.remaining_seconds or 0) - 1
            if remaining > 0:
                self._set_state(SessionState.testing(remaining))
                continue
            self._set_state(SessionState.testing(0))
            self._finish()
            return

    def _finish(self) -> None:
        self._countdown = None
        self._stop_samplers()
        self._set_state(SessionState.finished())
        self.dispatcher.announce(AlertKind.TEST_ENDED)
        if self._finished is not None:
            self._finished.set()

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
            self._countdown = None

    def _start_samplers(self) -> None:
        self.posture_sampler.start(self.config.posture_interval_ms / 1000.0, self._on_posture_tick)
        self.detection_sampler.start(self.config.detection_interval_ms / 1000.0, self._on_detection_tick)

    def _stop_samplers(self) -> None:
        self.posture_sampler.stop()
        self.detection_sampler.stop()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------
    def _grab_frame(self) -> np.ndarray | None:
        if not self.video.ready:
            self.stats.skipped_ticks += 1
            return None
        frame = self.video.read()
        if frame is None:
            self.stats.skipped_ticks += 1
        return frame

    async def _on_posture_tick(self) -> None:
        frame = self._grab_frame()
        if frame is None:
            return
        self.stats.posture_ticks += 1
        try:
            result = await self.classifier.classify(frame)
        except ModelInferenceError as e:
            self.stats.inference_failures += 1
            logger.warning("posture tick skipped: %s", e)
            return
        self._consume_classification(result)

    async def _on_detection_tick(self) -> None:
        frame = self._grab_frame()
        if frame is None:
            return
        self.stats.detection_ticks += 1
        try:
            objects = await self.detector.detect(frame)
        except ModelInferenceError as e:
            self.stats.inference_failures += 1
            logger.warning("detection tick skipped: %s", e)
            return
        self._consume_detections(objects)

    def _consume_classification(self, result: ClassificationResult) -> None:
        if result.confidence > self.config.detection_confidence:
            self.current_behavior = result.label
            if self.render is not None:
                self.render.show_behavior(result.label)

        # Checked when the result lands, not when the tick was issued.
        if self.phase is not SessionPhase.TESTING:
            self.stats.discarded_results += 1
            return
        self.dispatcher.dispatch(result)

    def _consume_detections(self, objects: list[DetectedObject]) -> None:
        self.current_detections = objects
        if self.render is not None:
            self.render.show_detections(objects)

        if self.phase is not SessionPhase.TESTING:
            self.stats.discarded_results += 1
            return
        self.dispatcher.dispatch(objects)

    def _count_alert(self, kind: AlertKind) -> None:
        self.stats.alerts[kind] += 1
