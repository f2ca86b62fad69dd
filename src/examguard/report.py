from __future__ import annotations

import csv
import json
from pathlib import Path

from examguard.models import AlertKind

REPORT_FIELDS = [
    "session_id",
    "completed",
    "duration_seconds",
    "posture_ticks",
    "detection_ticks",
    "inference_failures",
    *[f"alerts_{kind.value}" for kind in AlertKind],
    "violation_alerts",
    "violations_per_minute",
]


def aggregate_summaries(summary_dir: Path) -> list[dict]:
    """One flat report row per session summary JSON, ordered by session id."""
    rows: list[dict] = []
    for path in sorted(summary_dir.glob("*.json")):
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)

        alerts = data.get("alerts", {})
        duration_s = float(data.get("duration_seconds", 0.0))
        violations = int(data.get("violation_alerts", 0))
        row = {
            "session_id": data["session_id"],
            "completed": bool(data.get("completed", False)),
            "duration_seconds": duration_s,
            "posture_ticks": int(data.get("posture_ticks", 0)),
            "detection_ticks": int(data.get("detection_ticks", 0)),
            "inference_failures": int(data.get("inference_failures", 0)),
            "violation_alerts": violations,
            "violations_per_minute": (violations / (duration_s / 60.0)) if duration_s > 0 else 0.0,
        }
        for kind in AlertKind:
            row[f"alerts_{kind.value}"] = int(alerts.get(kind.value, 0))
        rows.append(row)

    return sorted(rows, key=lambda r: r["session_id"])


def write_reports(rows: list[dict], output_dir: Path) -> tuple[Path, Path]:
    output_dir.mkdir(parents=True, exist_ok=True)
    csv_path = output_dir / "session_report.csv"
    md_path = output_dir / "session_report.md"

    with csv_path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=REPORT_FIELDS)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)

    with md_path.open("w", encoding="utf-8") as f:
        f.write("# Proctoring Sessions\n\n")
        if not rows:
            f.write("No summary files found.\n")
        else:
            f.write("| Session | Completed | Duration (s) | Phone | Movement | Cheating | Violations/min | Failures |\n")
            f.write("|---|:-:|---:|---:|---:|---:|---:|---:|\n")
            for row in rows:
                f.write(
                    "| {session_id} | {done} | {duration_seconds:.1f} | {alerts_phone_detected} | "
                    "{alerts_no_movement_allowed} | {alerts_no_cheating_allowed} | "
                    "{violations_per_minute:.2f} | {inference_failures} |\n".format(
                        done="yes" if row["completed"] else "no", **row
                    )
                )

    return csv_path, md_path
