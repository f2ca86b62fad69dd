from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Sequence

import cv2

from examguard.adapters import ObjectDetectorAdapter, PostureClassifierAdapter
from examguard.camera import VideoSource
from examguard.config import MonitorConfig
from examguard.detectors.base import BaseEmbedder, BaseObjectDetector
from examguard.dispatcher import AlertDispatcher
from examguard.knn import KNNClassifier
from examguard.models import AlertKind, CuePlayer, Label, SessionPhase, SessionState
from examguard.render import OverlayRenderer
from examguard.sampler import FrameSampler
from examguard.session import ProctorSession

logger = logging.getLogger(__name__)

WINDOW_TITLE = "ExamGuard Webcam"


@dataclass
class RunArtifacts:
    session_id: str
    event_log_path: Path
    summary_path: Path
    summary: dict


class ProctorRunner:
    def __init__(
        self,
        video: VideoSource,
        embedder: BaseEmbedder,
        detector: BaseObjectDetector,
        player: CuePlayer,
        config: MonitorConfig,
        output_dir: Path,
        display: bool = True,
        display_fps: int = 30,
        session_tag: str | None = None,
    ) -> None:
        self.video = video
        self.config = config
        self.output_dir = output_dir
        self.display = display
        self.display_fps = max(display_fps, 1)
        self.session_tag = session_tag
        self.player = player

        self.classifier = PostureClassifierAdapter(embedder, KNNClassifier())
        self.detector = ObjectDetectorAdapter(detector)
        self.renderer = OverlayRenderer()
        self.dispatcher = AlertDispatcher(
            player,
            confidence_threshold=config.detection_confidence,
            phone_class=config.phone_class,
            phone_min_score=config.phone_min_score,
        )
        self.session = ProctorSession(
            video=video,
            classifier=self.classifier,
            detector=self.detector,
            dispatcher=self.dispatcher,
            config=config,
            render=self.renderer,
        )
        self._quit = asyncio.Event()
        self._display_sampler = FrameSampler("display")

    # ------------------------------------------------------------------
    def train(
        self,
        labels: Sequence[Label],
        output_path: Path,
        dataset_path: Path | None = None,
        prepare_seconds: float = 3.0,
    ) -> Path:
        """Collect examples for each label in turn and export the dataset."""
        return asyncio.run(self._train(labels, output_path, dataset_path, prepare_seconds))

    def run(self, duration_minutes: float, dataset_path: Path) -> RunArtifacts:
        """Load ``dataset_path`` and proctor one test of ``duration_minutes``."""
        return asyncio.run(self._run(duration_minutes, dataset_path))

    # ------------------------------------------------------------------
    async def _train(
        self,
        labels: Sequence[Label],
        output_path: Path,
        dataset_path: Path | None,
        prepare_seconds: float,
    ) -> Path:
        self._quit = asyncio.Event()
        self._start_display()
        try:
            if dataset_path is not None:
                self.session.load_dataset(dataset_path)
            for label in labels:
                if self._quit.is_set():
                    break
                print(f"Get ready to record [ {label.value} ] in {prepare_seconds:.0f}s ...")
                await asyncio.sleep(prepare_seconds)
                await self.session.train(label)
                print(f"[ {label.value} ] training complete.")
            return self.session.save_dataset(output_path)
        finally:
            await self._teardown()

    async def _run(self, duration_minutes: float, dataset_path: Path) -> RunArtifacts:
        session_id = self._build_session_id(self.session_tag)
        sessions_dir = self.output_dir / "sessions"
        summaries_dir = self.output_dir / "summaries"
        sessions_dir.mkdir(parents=True, exist_ok=True)
        summaries_dir.mkdir(parents=True, exist_ok=True)
        event_log_path = sessions_dir / f"{session_id}.jsonl"
        summary_path = summaries_dir / f"{session_id}.json"

        self._quit = asyncio.Event()
        self.session.load_dataset(dataset_path)

        start = time.time()
        with event_log_path.open("w", encoding="utf-8") as logf:
            recorder = _EventRecorder(session_id, logf)
            self.session.on_state_change = recorder.on_state_change
            self.dispatcher.add_listener(recorder.on_alert)

            self._start_display()
            try:
                self.session.start_test(duration_minutes)
                finished = asyncio.ensure_future(self.session.wait_finished())
                quit_requested = asyncio.ensure_future(self._quit.wait())
                done, pending = await asyncio.wait(
                    {finished, quit_requested}, return_when=asyncio.FIRST_COMPLETED
                )
                for task in pending:
                    task.cancel()
                final_state = self.session.state
                if final_state.phase is not SessionPhase.FINISHED:
                    logger.info("test stopped before the countdown ended")
                    recorder.write("stopped", {"state": final_state.to_dict()})
            finally:
                await self._teardown()

        elapsed_s = max(time.time() - start, 1e-6)
        summary = self._build_summary(session_id, elapsed_s, duration_minutes, final_state)
        with summary_path.open("w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)

        return RunArtifacts(
            session_id=session_id,
            event_log_path=event_log_path,
            summary_path=summary_path,
            summary=summary,
        )

    def close(self) -> None:
        self.player.close()
        self.classifier.close()
        self.detector.close()

    # ------------------------------------------------------------------
    def _start_display(self) -> None:
        if self.display:
            self._display_sampler.start(1.0 / self.display_fps, self._on_display_tick)

    async def _on_display_tick(self) -> None:
        frame = self.video.read() if self.video.ready else None
        if frame is None:
            return
        self.renderer.draw(frame, self.session.state)
        cv2.imshow(WINDOW_TITLE, frame)
        if cv2.waitKey(1) & 0xFF == ord("q"):
            self._quit.set()

    async def _teardown(self) -> None:
        self._display_sampler.stop()
        await self._display_sampler.drain()
        await self.session.shutdown()
        if self.display:
            cv2.destroyAllWindows()

    def _build_summary(
        self,
        session_id: str,
        elapsed_s: float,
        duration_minutes: float,
        final_state: SessionState,
    ) -> dict:
        stats = self.session.stats.to_dict()
        alerts = stats.pop("alerts")
        violation_kinds = (
            AlertKind.PHONE_DETECTED,
            AlertKind.NO_MOVEMENT_ALLOWED,
            AlertKind.NO_CHEATING_ALLOWED,
        )
        return {
            "session_id": session_id,
            "duration_seconds": elapsed_s,
            "planned_duration_seconds": duration_minutes * 60.0,
            "completed": final_state.phase is SessionPhase.FINISHED,
            "final_state": final_state.to_dict(),
            **stats,
            "alerts": alerts,
            "violation_alerts": sum(alerts[k.value] for k in violation_kinds),
            "trained_labels": sorted(label.value for label in self.classifier.trained_labels()),
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        }

    @staticmethod
    def _build_session_id(session_tag: str | None) -> str:
        t = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        suffix = f"_{session_tag}" if session_tag else ""
        return f"exam_{t}{suffix}"


class _EventRecorder:
    """Appends alert and phase-change records to the session's JSONL log."""

    def __init__(self, session_id: str, logf: IO[str]) -> None:
        self.session_id = session_id
        self._logf = logf
        self._last_phase: SessionPhase | None = None

    def on_state_change(self, state: SessionState) -> None:
        if state.phase is self._last_phase:
            return
        self._last_phase = state.phase
        self.write("state", state.to_dict())

    def on_alert(self, kind: AlertKind) -> None:
        self.write("alert", {"kind": kind.value})

    def write(self, event: str, payload: dict) -> None:
        record = {
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
            "session_id": self.session_id,
            "event": event,
            **payload,
        }
        self._logf.write(json.dumps(record) + "\n")
        self._logf.flush()
