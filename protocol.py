"""Realtime transcription wire schema.

Outbound messages are plain dicts ready to be serialised by the realtime
connection. Inbound messages are decoded by ``decode_event`` into one of the
event dataclasses below; unknown event types decode to ``None``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

SERVICE_SAMPLE_RATE = 24000
CONFIDENCE_BANDS: tuple[tuple[float, str], ...] = (
    (-0.5, "very_high"),
    (-1.0, "high"),
    (-2.0, "medium"),
    (-3.0, "low"),
)
LOGPROBS_INCLUDE = "item.input_audio_transcription.logprobs"

DELTA_EVENT = "conversation.item.input_audio_transcription.delta"
COMPLETED_EVENT = "conversation.item.input_audio_transcription.completed"
FAILED_EVENT = "conversation.item.input_audio_transcription.failed"
ERROR_EVENT = "error"


class ProtocolParseError(ValueError):
    pass


@dataclass(frozen=True)
class TokenLogprob:
    token: str
    logprob: float
    bytes: Optional[tuple[int, ...]] = None

    @property
    def confidence_band(self) -> str:
        for floor, band in CONFIDENCE_BANDS:
            if self.logprob >= floor:
                return band
        return "very_low"


@dataclass(frozen=True)
class TranscriptDelta:
    item_id: str
    delta: str


@dataclass(frozen=True)
class TranscriptCompleted:
    item_id: str
    transcript: str
    logprobs: Optional[tuple[TokenLogprob, ...]] = None


@dataclass(frozen=True)
class TranscriptionFailed:
    item_id: str
    message: str


@dataclass(frozen=True)
class ServiceError:
    message: str
    code: str = ""


InboundEvent = Union[TranscriptDelta, TranscriptCompleted, TranscriptionFailed, ServiceError]


def session_update_message(
    model: str,
    language_hint: Optional[str] = None,
    request_logprobs: bool = True,
    sample_rate: int = SERVICE_SAMPLE_RATE,
) -> dict[str, Any]:
    transcription: dict[str, Any] = {"model": model}
    if language_hint:
        transcription["language"] = language_hint
    session: dict[str, Any] = {
        "type": "transcription",
        "audio": {
            "input": {
                "format": {"type": "audio/pcm", "rate": sample_rate},
                "transcription": transcription,
                # Commits are driven by the client, never by server VAD.
                "turn_detection": None,
            }
        },
    }
    if request_logprobs:
        session["include"] = [LOGPROBS_INCLUDE]
    return {"type": "session.update", "session": session}


def audio_append_message(audio_b64: str) -> dict[str, Any]:
    return {"type": "input_audio_buffer.append", "audio": audio_b64}


def audio_commit_message() -> dict[str, Any]:
    return {"type": "input_audio_buffer.commit"}


def decode_event(raw: Union[bytes, str]) -> Optional[InboundEvent]:
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ProtocolParseError(f"inbound message is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolParseError("inbound message is not a JSON object")
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ProtocolParseError("inbound message has no event type")

    if event_type == DELTA_EVENT:
        return TranscriptDelta(
            item_id=_optional_str(payload, "item_id"),
            delta=_required_str(payload, "delta", event_type),
        )
    if event_type == COMPLETED_EVENT:
        return TranscriptCompleted(
            item_id=_optional_str(payload, "item_id"),
            transcript=_required_str(payload, "transcript", event_type),
            logprobs=decode_logprobs(payload.get("logprobs")),
        )
    if event_type == FAILED_EVENT:
        return TranscriptionFailed(
            item_id=_optional_str(payload, "item_id"),
            message=_error_message(payload.get("error"), "transcription failed"),
        )
    if event_type == ERROR_EVENT:
        error = payload.get("error")
        code = error.get("code") if isinstance(error, dict) else None
        return ServiceError(
            message=_error_message(error, "unknown realtime error"),
            code=code if isinstance(code, str) else "",
        )
    return None


def decode_logprobs(value: Any) -> Optional[tuple[TokenLogprob, ...]]:
    """Decode the top-level ``logprobs`` array of a completed event.

    Anything other than a list of ``{token, logprob, bytes?}`` objects yields
    ``None`` so that a malformed confidence payload never costs the transcript.
    """
    if value is None:
        return None
    if not isinstance(value, list):
        logging.warning("realtime_logprobs_ignored reason=not_a_list kind=%s", type(value).__name__)
        return None
    decoded: list[TokenLogprob] = []
    for entry in value:
        if not isinstance(entry, dict):
            logging.warning("realtime_logprobs_ignored reason=entry_not_object")
            return None
        token = entry.get("token")
        logprob = entry.get("logprob")
        if not isinstance(token, str) or isinstance(logprob, bool) or not isinstance(logprob, (int, float)):
            logging.warning("realtime_logprobs_ignored reason=bad_entry")
            return None
        raw_bytes = entry.get("bytes")
        token_bytes: Optional[tuple[int, ...]] = None
        if isinstance(raw_bytes, list) and all(isinstance(b, int) for b in raw_bytes):
            token_bytes = tuple(raw_bytes)
        decoded.append(TokenLogprob(token=token, logprob=float(logprob), bytes=token_bytes))
    return tuple(decoded)


def _required_str(payload: dict[str, Any], key: str, event_type: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ProtocolParseError(f"{event_type} is missing string field '{key}'")
    return value


def _optional_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


def _error_message(error: Any, default: str) -> str:
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
    return default
