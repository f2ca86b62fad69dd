from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from examguard.models import AlertKind, Label


@dataclass
class CueConfig:
    frequency_hz: float = 880.0
    duration_s: float = 1.0
    volume: float = 0.2


DEFAULT_CUES: dict[AlertKind, CueConfig] = {
    AlertKind.PHONE_DETECTED: CueConfig(frequency_hz=1320.0, duration_s=1.5),
    AlertKind.NO_MOVEMENT_ALLOWED: CueConfig(frequency_hz=660.0, duration_s=1.2),
    AlertKind.NO_CHEATING_ALLOWED: CueConfig(frequency_hz=990.0, duration_s=1.2),
    AlertKind.TEST_STARTED: CueConfig(frequency_hz=523.25, duration_s=0.6),
    AlertKind.TEST_ENDED: CueConfig(frequency_hz=392.0, duration_s=1.0),
}


@dataclass
class MonitorConfig:
    detection_confidence: float = 0.8
    examples_per_label: int = 50
    training_interval_ms: int = 100
    posture_interval_ms: int = 200
    detection_interval_ms: int = 500
    countdown_tick_s: float = 1.0
    phone_class: str = "cell phone"
    phone_min_score: float = 0.0
    required_labels: list[Label] = field(default_factory=lambda: list(Label))
    cues: dict[AlertKind, CueConfig] = field(default_factory=lambda: dict(DEFAULT_CUES))

    def __post_init__(self) -> None:
        if not 0.0 <= self.detection_confidence <= 1.0:
            raise ValueError(f"detection_confidence must be in [0, 1], got {self.detection_confidence}")
        if self.examples_per_label < 1:
            raise ValueError("examples_per_label must be >= 1")
        for name in ("training_interval_ms", "posture_interval_ms", "detection_interval_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.countdown_tick_s <= 0:
            raise ValueError("countdown_tick_s must be > 0")
        self.required_labels = [Label(v) for v in self.required_labels]


def load_monitor_config(config_path: Path) -> MonitorConfig:
    if not config_path.exists():
        return MonitorConfig()

    with config_path.open("r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}

    monitor = dict(doc.get("monitor") or {})
    known = {f.name for f in fields(MonitorConfig)} - {"cues"}
    unknown = sorted(set(monitor) - known)
    if unknown:
        raise ValueError(f"Unknown monitor settings in {config_path}: {', '.join(unknown)}")

    cues = dict(DEFAULT_CUES)
    for kind_name, cue_doc in (doc.get("cues") or {}).items():
        kind = AlertKind(kind_name)
        cues[kind] = CueConfig(**(cue_doc or {}))

    return MonitorConfig(**monitor, cues=cues)


def load_model_config(config_path: Path, model_name: str) -> dict:
    if not config_path.exists():
        return {}

    with config_path.open("r", encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}

    models = doc.get("models", {})
    return models.get(model_name, {})
