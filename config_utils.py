from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def read_str_env(name: str, default: str = "") -> str:
    raw = (os.getenv(name) or "").strip()
    return raw or default


def read_float_env(name: str, default: float, allow_zero: bool = False) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value > 0 or (allow_zero and value == 0):
        return value
    return default


def read_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_bool_env(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass
class SessionSettings:
    api_key: str = ""
    model: str = "gpt-4o-mini-transcribe"
    session_model: str = "gpt-realtime-mini"
    language_hint: Optional[str] = None
    language_a: str = "de"
    language_b: str = "en"
    commit_horizon_s: int = 10
    commit_tick_s: float = 1.0
    commit_grace_s: float = 0.1
    auto_translate_delay_s: float = 0.5
    audio_gain: float = 1.5
    sample_rate: int = 16000
    frame_ms: int = 100
    input_device: Optional[str] = None
    translation_model: str = "gpt-4o"
    translation_fallback_model: str = "gpt-4o-mini"
    request_logprobs: bool = True
    metrics_enabled: bool = False
    metrics_output_path: str = "./reports/session_journal.jsonl"
    metrics_summary_path: str = "./reports/session_summary.json"

    @classmethod
    def from_env(cls) -> SessionSettings:
        language_hint = read_str_env("TRANSCRIPTION_LANGUAGE_HINT").lower()
        return cls(
            api_key=read_str_env("OPENAI_API_KEY"),
            model=read_str_env("TRANSCRIPTION_MODEL", cls.model),
            session_model=read_str_env("REALTIME_SESSION_MODEL", cls.session_model),
            language_hint=None if language_hint in {"", "auto"} else language_hint,
            language_a=read_str_env("LANGUAGE_A", cls.language_a).lower(),
            language_b=read_str_env("LANGUAGE_B", cls.language_b).lower(),
            commit_horizon_s=read_int_env("AUTO_COMMIT_SECONDS", cls.commit_horizon_s),
            commit_grace_s=read_float_env("AUTO_COMMIT_GRACE_SECONDS", cls.commit_grace_s, allow_zero=True),
            auto_translate_delay_s=read_float_env(
                "AUTO_TRANSLATE_DELAY_SECONDS", cls.auto_translate_delay_s, allow_zero=True
            ),
            audio_gain=read_float_env("AUDIO_GAIN", cls.audio_gain),
            frame_ms=read_int_env("AUDIO_FRAME_MS", cls.frame_ms),
            input_device=read_str_env("AUDIO_INPUT_DEVICE") or None,
            translation_model=read_str_env("TRANSLATION_MODEL", cls.translation_model),
            translation_fallback_model=read_str_env("TRANSLATION_FALLBACK_MODEL", cls.translation_fallback_model),
            request_logprobs=read_bool_env("REQUEST_LOGPROBS", cls.request_logprobs),
            metrics_enabled=read_bool_env("METRICS_ENABLED", cls.metrics_enabled),
            metrics_output_path=read_str_env("METRICS_OUTPUT_PATH", cls.metrics_output_path),
            metrics_summary_path=read_str_env("METRICS_SUMMARY_PATH", cls.metrics_summary_path),
        )

    @property
    def frame_samples(self) -> int:
        return max(1, int(self.sample_rate * self.frame_ms / 1000))
