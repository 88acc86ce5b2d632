from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from transcripts import Transcript


def _percentile(values: list[float], ratio: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    index = (len(ordered) - 1) * ratio
    lower = int(index)
    upper = min(lower + 1, len(ordered) - 1)
    if lower == upper:
        return ordered[lower]
    weight = index - lower
    return ordered[lower] * (1.0 - weight) + ordered[upper] * weight


class SessionMetricsReporter:
    def __init__(self, enabled: bool, output_path: str, summary_path: str, append_mode: bool = False) -> None:
        self._enabled = enabled
        self._output_path = Path(output_path)
        self._summary_path = Path(summary_path)
        self._append_mode = append_mode
        self._session_started_at: Optional[datetime] = None
        self._translation_latencies: list[float] = []
        self._transcripts_logged = 0
        self._commits_sent = 0
        self._commits_skipped = 0
        self._auto_translations = 0
        self._manual_translations = 0
        self._error_events = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_session(self) -> None:
        if not self._enabled:
            return
        self._session_started_at = datetime.now()
        self._translation_latencies.clear()
        self._transcripts_logged = 0
        self._commits_sent = 0
        self._commits_skipped = 0
        self._auto_translations = 0
        self._manual_translations = 0
        self._error_events = 0
        self._ensure_parent_dirs()
        if not self._append_mode:
            self._output_path.write_text("", encoding="utf-8")

    def record_transcript(self, transcript: Transcript) -> None:
        if not self._enabled:
            return
        self._transcripts_logged += 1
        self._append_jsonl(
            {
                "event_type": "transcript",
                "recorded_at": self._now(),
                "transcript_id": transcript.id,
                "created_at": transcript.timestamp.isoformat(timespec="milliseconds"),
                "text": transcript.text,
                "detected_language": transcript.detected_language or "",
                "token_count": len(transcript.logprobs or ()),
            }
        )

    def record_commit(self, sent: bool, chunks: int, trigger: str) -> None:
        if not self._enabled:
            return
        if sent:
            self._commits_sent += 1
        else:
            self._commits_skipped += 1
        self._append_jsonl(
            {
                "event_type": "commit",
                "recorded_at": self._now(),
                "sent": sent,
                "chunks": chunks,
                "trigger": trigger,
            }
        )

    def record_translation(self, transcript_id: str, target_language: str, mode: str, latency_s: float) -> None:
        if not self._enabled:
            return
        if mode == "auto":
            self._auto_translations += 1
        else:
            self._manual_translations += 1
        self._translation_latencies.append(latency_s)
        self._append_jsonl(
            {
                "event_type": "translation",
                "recorded_at": self._now(),
                "transcript_id": transcript_id,
                "target_language": target_language,
                "mode": mode,
                "latency_s": latency_s,
            }
        )

    def record_error(self, stage: str, error: str) -> None:
        if not self._enabled:
            return
        self._error_events += 1
        self._append_jsonl(
            {
                "event_type": "error",
                "recorded_at": self._now(),
                "stage": stage,
                "error": error,
            }
        )

    def finalize_session(self) -> dict[str, Any]:
        if not self._enabled:
            return {}
        now = datetime.now()
        started = self._session_started_at or now
        latencies = self._translation_latencies
        summary = {
            "session_started_at": started.isoformat(timespec="milliseconds"),
            "session_ended_at": now.isoformat(timespec="milliseconds"),
            "session_duration_s": max(0.0, (now - started).total_seconds()),
            "transcripts_logged": self._transcripts_logged,
            "commits_sent": self._commits_sent,
            "commits_skipped": self._commits_skipped,
            "auto_translations": self._auto_translations,
            "manual_translations": self._manual_translations,
            "error_events": self._error_events,
            "translation_latency_avg_s": (sum(latencies) / len(latencies)) if latencies else 0.0,
            "translation_latency_p50_s": _percentile(latencies, 0.50),
            "translation_latency_p95_s": _percentile(latencies, 0.95),
        }
        self._write_summary(summary)
        return summary

    @staticmethod
    def _now() -> str:
        return datetime.now().isoformat(timespec="milliseconds")

    def _ensure_parent_dirs(self) -> None:
        self._output_path.parent.mkdir(parents=True, exist_ok=True)
        self._summary_path.parent.mkdir(parents=True, exist_ok=True)

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self._ensure_parent_dirs()
        line = json.dumps(payload, ensure_ascii=False)
        with self._output_path.open("a", encoding="utf-8") as handle:
            handle.write(line)
            handle.write("\n")

    def _write_summary(self, summary: dict[str, Any]) -> None:
        self._ensure_parent_dirs()
        with self._summary_path.open("w", encoding="utf-8") as handle:
            json.dump(summary, handle, ensure_ascii=False, indent=2)
