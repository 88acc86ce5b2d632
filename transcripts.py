from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from protocol import TokenLogprob

LOW_CONFIDENCE_BANDS = frozenset({"low", "very_low"})


def new_transcript_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}"


@dataclass(frozen=True)
class Transcript:
    id: str
    timestamp: datetime
    text: str
    original_text: Optional[str] = None
    detected_language: Optional[str] = None
    detected_language_name: Optional[str] = None
    logprobs: Optional[tuple[TokenLogprob, ...]] = None

    @property
    def source_text(self) -> str:
        return self.original_text or self.text

    @property
    def is_translated(self) -> bool:
        return self.original_text is not None

    @property
    def uncertain_tokens(self) -> tuple[str, ...]:
        if not self.logprobs:
            return ()
        return tuple(
            item.token.strip()
            for item in self.logprobs
            if item.confidence_band in LOW_CONFIDENCE_BANDS and item.token.strip()
        )


class TranscriptStore:
    """Newest-first list of finalized transcripts.

    Records are replaced in place on translation so the ordering established at
    creation time never changes.
    """

    def __init__(self) -> None:
        self._items: list[Transcript] = []

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> tuple[Transcript, ...]:
        return tuple(self._items)

    def prepend(self, transcript: Transcript) -> None:
        self._items.insert(0, transcript)

    def get(self, transcript_id: str) -> Optional[Transcript]:
        for item in self._items:
            if item.id == transcript_id:
                return item
        return None

    def apply_translation(self, transcript_id: str, translated: str, target_name: str) -> Optional[Transcript]:
        for index, item in enumerate(self._items):
            if item.id != transcript_id:
                continue
            updated = replace(
                item,
                text=f"{translated} ({target_name})",
                original_text=item.original_text if item.original_text is not None else item.text,
            )
            self._items[index] = updated
            return updated
        return None

    def delete(self, transcript_id: str) -> bool:
        before = len(self._items)
        self._items = [item for item in self._items if item.id != transcript_id]
        return len(self._items) != before

    def clear(self) -> None:
        self._items.clear()


def format_transcripts_for_export(transcripts: Iterable[Transcript]) -> str:
    newest_first = list(transcripts)
    if not newest_first:
        return ""
    entries = []
    for index, transcript in enumerate(newest_first, start=1):
        line = f"{index}. [{transcript.timestamp.strftime('%Y-%m-%d %H:%M:%S')}] {transcript.text}"
        if transcript.is_translated and transcript.original_text != transcript.text:
            line += f"\n   Original: {transcript.original_text}"
        entries.append(line)
    # Numbered newest-first, listed oldest-first.
    entries.reverse()
    return f"Transcription Results ({len(newest_first)} segments)\n\n" + "\n\n".join(entries)
