from __future__ import annotations

import argparse
import logging
from pathlib import Path

from examguard.errors import ExamGuardError
from examguard.models import Label
from examguard.report import aggregate_summaries, write_reports

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ExamGuard webcam proctoring monitor")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_camera_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--camera-id", type=int, default=0, help="Webcam device id")
        p.add_argument(
            "--camera-name",
            default=None,
            help='Preferred webcam name (e.g., "Logitech C270"). Resolves to camera index when possible.',
        )
        p.add_argument("--embedder", default="yolo-embed", help="Embedding backend (yolo-embed, mediapipe-pose)")
        p.add_argument("--detector", default="yolo-detect", help="Object detector backend")
        p.add_argument("--no-display", action="store_true", help="Do not show the annotated webcam window")
        p.add_argument("--config", default="configs/monitor.yaml", help="Monitor and model config YAML")

    train = sub.add_parser("train", help="Record posture examples and save a classifier dataset")
    add_camera_args(train)
    train.add_argument(
        "--labels",
        nargs="+",
        default=[label.value for label in Label],
        choices=[label.value for label in Label],
        help="Labels to record, in order",
    )
    train.add_argument("--output", required=True, help="Where to write the dataset JSON")
    train.add_argument(
        "--dataset",
        default=None,
        help="Existing dataset to extend. Must come from the same --embedder; mixed embedding sizes are rejected.",
    )
    train.add_argument("--prepare-seconds", type=float, default=3.0, help="Pause before each label is recorded")

    run = sub.add_parser("run", help="Proctor a timed test with a trained dataset")
    add_camera_args(run)
    run.add_argument("--dataset", required=True, help="Dataset JSON produced by `train`")
    run.add_argument("--duration-minutes", type=float, required=True, help="Test length in minutes")
    run.add_argument("--no-audio", action="store_true", help="Log alerts instead of playing cues")
    run.add_argument("--session-tag", default=None, help="Optional run tag appended to session id")
    run.add_argument("--output-dir", default="outputs", help="Directory for event logs and summaries")

    summ = sub.add_parser("summarize", help="Aggregate session summaries into a report")
    summ.add_argument("--input-dir", default="outputs/summaries", help="Directory containing session summary JSON")
    summ.add_argument("--output-dir", default="outputs/reports", help="Output directory for reports")

    inspect = sub.add_parser("inspect-dataset", help="Show labels and example counts of a dataset")
    inspect.add_argument("path", help="Dataset JSON")

    sub.add_parser("list-cameras", help="List available webcam devices")

    return parser.parse_args(argv)


def _open_video(args: argparse.Namespace):
    from examguard.camera import VideoSource, resolve_camera_id
    from examguard.errors import CameraUnavailableError

    camera_id = resolve_camera_id(args.camera_id, args.camera_name)
    print(f"Using camera_id={camera_id}")
    video = VideoSource(camera_id)
    if not video.wait_ready():
        video.close()
        raise CameraUnavailableError(f"Camera {camera_id} opened but produced no frames")
    return video


def _build_runner(args: argparse.Namespace, video, silent: bool):
    from examguard.audio import SilentCuePlayer, ToneCuePlayer
    from examguard.config import load_model_config, load_monitor_config
    from examguard.detectors.factory import build_embedder, build_object_detector
    from examguard.runner import ProctorRunner

    config_path = Path(args.config)
    config = load_monitor_config(config_path)
    embedder = build_embedder(args.embedder, load_model_config(config_path, args.embedder))
    detector = build_object_detector(args.detector, load_model_config(config_path, args.detector))
    player = SilentCuePlayer() if silent else ToneCuePlayer(config.cues)

    return ProctorRunner(
        video=video,
        embedder=embedder,
        detector=detector,
        player=player,
        config=config,
        output_dir=Path(getattr(args, "output_dir", "outputs")),
        display=not args.no_display,
        session_tag=getattr(args, "session_tag", None),
    )


def train(args: argparse.Namespace) -> int:
    video = _open_video(args)
    runner = None
    try:
        runner = _build_runner(args, video, silent=True)
        output = runner.train(
            labels=[Label(v) for v in args.labels],
            output_path=Path(args.output),
            dataset_path=Path(args.dataset) if args.dataset else None,
            prepare_seconds=args.prepare_seconds,
        )
    finally:
        if runner is not None:
            runner.close()
        video.close()
    print(f"Dataset saved: {output}")
    return 0


def run(args: argparse.Namespace) -> int:
    video = _open_video(args)
    runner = None
    try:
        runner = _build_runner(args, video, silent=args.no_audio)
        artifacts = runner.run(duration_minutes=args.duration_minutes, dataset_path=Path(args.dataset))
    finally:
        if runner is not None:
            runner.close()
        video.close()

    print(f"Session complete: {artifacts.session_id}")
    print(f"Event log: {artifacts.event_log_path}")
    print(f"Summary: {artifacts.summary_path}")
    summary = artifacts.summary
    print("Key metrics:")
    print(f"  completed: {summary['completed']}")
    for kind, count in summary["alerts"].items():
        print(f"  {kind}: {count}")
    print(f"  inference failures: {summary['inference_failures']}")
    return 0


def summarize(args: argparse.Namespace) -> int:
    rows = aggregate_summaries(Path(args.input_dir))
    csv_path, md_path = write_reports(rows, Path(args.output_dir))
    print(f"Wrote session CSV: {csv_path}")
    print(f"Wrote session Markdown: {md_path}")
    return 0


def inspect_dataset(args: argparse.Namespace) -> int:
    from examguard.store import loads

    dataset = loads(Path(args.path).read_bytes())
    dim = next(iter(dataset.values())).shape[1]
    print(f"Dataset: {args.path} (dim={dim})")
    for label, vectors in dataset.items():
        print(f"  {label.value}: {len(vectors)} examples")
    return 0


def list_cameras() -> int:
    from examguard.camera import list_cameras_avfoundation

    cameras = list_cameras_avfoundation()
    if not cameras:
        print("No cameras found via ffmpeg AVFoundation listing.")
        return 1

    print("Available cameras:")
    for cam in cameras:
        print(f"  [{cam.idx}] {cam.name}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    try:
        if args.command == "train":
            return train(args)
        if args.command == "run":
            return run(args)
        if args.command == "summarize":
            return summarize(args)
        if args.command == "inspect-dataset":
            return inspect_dataset(args)
        if args.command == "list-cameras":
            return list_cameras()
    except (ExamGuardError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 2
    except KeyboardInterrupt:
        print("Interrupted.")
        return 130
    raise ValueError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
