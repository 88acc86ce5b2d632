from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import TYPE_CHECKING, Callable, Optional

from transcripts import Transcript, TranscriptStore
from translation_service import TranslationService, TranslationServiceError, TranslationUnavailableError

if TYPE_CHECKING:
    from metrics_reporter import SessionMetricsReporter


class TranslationDispatcher:
    """Runs auto and explicit translations and writes results back to the store.

    Auto translations are opportunistic: every failure is logged and the record
    is left alone. Explicit translations raise so the caller can report them.
    Both paths translate from the record's untranslated source text. A record
    translated concurrently by both paths keeps whichever result lands last.
    """

    def __init__(
        self,
        store: TranscriptStore,
        translator: Optional[TranslationService],
        loop: asyncio.AbstractEventLoop,
        delay_s: float = 0.5,
        on_change: Optional[Callable[[Transcript], None]] = None,
        metrics: Optional[SessionMetricsReporter] = None,
    ) -> None:
        self._store = store
        self._translator = translator
        self._loop = loop
        self._delay_s = delay_s
        self._on_change = on_change
        self._metrics = metrics
        self._pending_handles: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending_handles) + len(self._tasks)

    def schedule_auto_translation(self, transcript_id: str, source_text: str, target_code: str, target_name: str) -> None:
        logging.info("auto_translation_scheduled id=%s target=%s delay_s=%.2f", transcript_id, target_code, self._delay_s)
        handle: Optional[asyncio.TimerHandle] = None

        def _start() -> None:
            self._pending_handles.discard(handle)
            task = self._loop.create_task(
                self.auto_translate(transcript_id, source_text, target_code, target_name),
                name=f"auto-translate-{transcript_id}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        handle = self._loop.call_later(self._delay_s, _start)
        self._pending_handles.add(handle)

    async def auto_translate(self, transcript_id: str, source_text: str, target_code: str, target_name: str) -> None:
        if self._translator is None:
            logging.info("auto_translation_skipped id=%s reason=no_api_key", transcript_id)
            return
        transcript = self._store.get(transcript_id)
        if transcript is None:
            logging.info("auto_translation_skipped id=%s reason=transcript_removed", transcript_id)
            return
        text = transcript.original_text or source_text
        started = perf_counter()
        try:
            translated = await self._translator.translate_text(text, target_name)
        except TranslationServiceError as exc:
            logging.warning("auto_translation_failed id=%s target=%s error=%s", transcript_id, target_code, exc)
            self._record_error("auto_translation", str(exc))
            return
        if not translated:
            logging.warning("auto_translation_failed id=%s target=%s error=empty_response", transcript_id, target_code)
            return
        updated = self._store.apply_translation(transcript_id, translated, target_name)
        if updated is None:
            logging.info("auto_translation_discarded id=%s reason=transcript_removed", transcript_id)
            return
        self._record_translation(transcript_id, target_name, "auto", perf_counter() - started)
        logging.info("auto_translation_applied id=%s target=%s", transcript_id, target_code)
        self._notify(updated)

    async def translate(self, transcript_id: str, target_name: str) -> str:
        if self._translator is None:
            raise TranslationUnavailableError("API key is not set.")
        transcript = self._store.get(transcript_id)
        if transcript is None:
            raise TranslationUnavailableError("Transcript not found.")
        started = perf_counter()
        try:
            translated = await self._translator.translate_text(transcript.source_text, target_name)
        except TranslationServiceError as exc:
            self._record_error("translation", str(exc))
            raise
        if not translated:
            return translated
        updated = self._store.apply_translation(transcript_id, translated, target_name)
        if updated is None:
            raise TranslationUnavailableError("Transcript not found.")
        self._record_translation(transcript_id, target_name, "manual", perf_counter() - started)
        self._notify(updated)
        return translated

    def cancel_pending(self) -> None:
        for handle in list(self._pending_handles):
            handle.cancel()
        self._pending_handles.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _notify(self, transcript: Transcript) -> None:
        if self._on_change is not None:
            self._on_change(transcript)

    def _record_translation(self, transcript_id: str, target_name: str, mode: str, latency_s: float) -> None:
        if self._metrics is not None:
            self._metrics.record_translation(transcript_id, target_name, mode, latency_s)

    def _record_error(self, stage: str, error: str) -> None:
        if self._metrics is not None:
            self._metrics.record_error(stage, error)
