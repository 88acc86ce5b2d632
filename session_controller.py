from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, Callable, Optional, Protocol, Union

from commit_scheduler import CommitScheduler, SchedulerState
from config_utils import SessionSettings
from frame_processor import FrameProcessor
from languages import detect_language, detector_language_name, selector_language_name, to_selector_code
from protocol import (
    ProtocolParseError,
    ServiceError,
    TranscriptCompleted,
    TranscriptDelta,
    TranscriptionFailed,
    audio_append_message,
    audio_commit_message,
    decode_event,
    session_update_message,
)
from realtime_transport import RealtimeTransport
from transcripts import Transcript, TranscriptStore, new_transcript_id
from translation_dispatcher import TranslationDispatcher
from translation_service import TranslationService

if TYPE_CHECKING:
    from metrics_reporter import SessionMetricsReporter


class AudioSource(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


TransportFactory = Callable[
    [Callable[[Union[bytes, str]], None], Callable[[Exception], None], Callable[[str], None]],
    RealtimeTransport,
]


class TranscriptionSession:
    """Owns one recording flow: connection, audio forwarding, commits, transcripts.

    Every entry point (frames, inbound messages, timers, translation results)
    runs on the session's event loop, which makes the loop the only writer of
    the session state.
    """

    MIN_CHUNKS_PER_COMMIT = 1
    FRAME_LOG_EVERY = 10

    def __init__(
        self,
        settings: SessionSettings,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        transport_factory: Optional[TransportFactory] = None,
        translator: Optional[TranslationService] = None,
        audio_source: Optional[AudioSource] = None,
        detector: Optional[Callable[[str], str]] = None,
        metrics: Optional[SessionMetricsReporter] = None,
        on_change: Optional[Callable[[TranscriptionSession], None]] = None,
    ) -> None:
        self._settings = settings
        self._loop = loop or asyncio.get_running_loop()
        self._transport_factory = transport_factory or self._default_transport_factory
        if translator is None and settings.api_key:
            translator = TranslationService(
                api_key=settings.api_key,
                model=settings.translation_model,
                fallback_model=settings.translation_fallback_model,
            )
        self._audio_source = audio_source
        self._detector = detector or detect_language
        self._metrics = metrics
        self._on_change = on_change
        self._model = settings.model
        self._language_a = settings.language_a
        self._language_b = settings.language_b

        self._store = TranscriptStore()
        self._processor = FrameProcessor(gain=settings.audio_gain, source_rate=settings.sample_rate)
        self._scheduler = CommitScheduler(
            self._loop,
            on_deadline=self._on_commit_deadline,
            horizon=settings.commit_horizon_s,
            tick_interval_s=settings.commit_tick_s,
            grace_s=settings.commit_grace_s,
            on_countdown=lambda _value: self._notify(),
        )
        self._dispatcher = TranslationDispatcher(
            self._store,
            translator,
            self._loop,
            delay_s=settings.auto_translate_delay_s,
            on_change=lambda _transcript: self._notify(),
            metrics=metrics,
        )

        self._transport: Optional[RealtimeTransport] = None
        self._connection_generation = 0
        self._interim_text = ""
        self._recording = False
        self._starting = False
        self._closed = False
        self._metrics_started = False
        self._loudness = 0.0
        self._has_sent_audio = False
        self._chunks_since_commit = 0
        self.last_error: Optional[str] = None

    @property
    def transcripts(self) -> tuple[Transcript, ...]:
        return self._store.items()

    @property
    def interim_text(self) -> str:
        return self._interim_text

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_open

    @property
    def loudness(self) -> float:
        return self._loudness

    @property
    def countdown(self) -> int:
        return self._scheduler.countdown

    @property
    def scheduler_state(self) -> SchedulerState:
        return self._scheduler.state

    @property
    def has_sent_audio(self) -> bool:
        return self._has_sent_audio

    @property
    def chunks_since_commit(self) -> int:
        return self._chunks_since_commit

    @property
    def model(self) -> str:
        return self._model

    @property
    def languages(self) -> tuple[str, str]:
        return self._language_a, self._language_b

    @property
    def pending_translations(self) -> int:
        return self._dispatcher.pending_count

    def attach_audio_source(self, audio_source: AudioSource) -> None:
        self._audio_source = audio_source

    def set_languages(self, language_a: str, language_b: str) -> None:
        self._language_a = (language_a or "").strip().lower()
        self._language_b = (language_b or "").strip().lower()
        self._notify()

    async def start(self) -> bool:
        if self._closed or self._starting:
            return False
        if self._recording:
            return True
        if self._transport is not None and self._transport.is_open:
            logging.info("session_resume model=%s", self._model)
            self._has_sent_audio = False
            return self._begin_capture()

        logging.info("session_start model=%s languages=%s/%s", self._model, self._language_a, self._language_b)
        self._dispatcher.cancel_pending()
        self._store.clear()
        self._interim_text = ""
        self._has_sent_audio = False
        self._chunks_since_commit = 0
        self._processor.reset()
        self.last_error = None
        if self._metrics is not None and not self._metrics_started:
            # One journal per session object; reconnects append to it.
            self._metrics.start_session()
            self._metrics_started = True

        self._connection_generation += 1
        generation = self._connection_generation
        transport = self._transport_factory(
            partial(self._on_transport_message, generation),
            partial(self._on_transport_error, generation),
            partial(self._on_transport_closed, generation),
        )
        self._transport = transport
        self._starting = True
        try:
            opened = await transport.open(self._session_message())
        finally:
            self._starting = False

        if generation != self._connection_generation:
            # Torn down while connecting.
            await transport.close()
            return False
        if not opened:
            self._transport = None
            logging.warning("session_start_failed error=%s", transport.last_error)
            self._notify()
            return False
        return self._begin_capture()

    def stop(self) -> None:
        if not self._recording:
            return
        logging.info("session_stop chunks_pending=%d", self._chunks_since_commit)
        self._stop_capture()
        self._recording = False
        self.commit(trigger="stop")
        self._notify()

    def manual_commit(self) -> bool:
        if not self._recording:
            return False
        logging.info("manual_commit_requested")
        sent = self.commit(trigger="manual")
        self._scheduler.arm_after_grace()
        return sent

    def commit(self, trigger: str = "auto") -> bool:
        sent = False
        chunks = self._chunks_since_commit
        transport = self._transport
        if transport is None or not transport.is_open:
            logging.info("commit_skipped reason=not_connected trigger=%s", trigger)
        elif chunks < self.MIN_CHUNKS_PER_COMMIT:
            logging.info(
                "commit_skipped reason=empty_buffer chunks=%d min=%d trigger=%s",
                chunks,
                self.MIN_CHUNKS_PER_COMMIT,
                trigger,
            )
        else:
            sent = transport.send(audio_commit_message())
            if sent:
                self._chunks_since_commit = 0
                self._has_sent_audio = False
                logging.info("commit_sent chunks=%d trigger=%s", chunks, trigger)
        self._scheduler.cancel()
        if self._metrics is not None:
            self._metrics.record_commit(sent, chunks, trigger)
        return sent

    async def translate(self, transcript_id: str, target_name: str) -> str:
        return await self._dispatcher.translate(transcript_id, target_name)

    def delete_transcript(self, transcript_id: str) -> bool:
        removed = self._store.delete(transcript_id)
        if removed:
            self._notify()
        return removed

    def clear_all(self) -> None:
        self._store.clear()
        self._notify()

    def update_model(self, model: str) -> None:
        model = (model or "").strip()
        if not model or model == self._model:
            return
        self._model = model
        if self._transport is not None and self._transport.is_open:
            logging.info("session_model_update model=%s", model)
            self._transport.send(self._session_message())

    def handle_audio_frame(self, pcm: bytes) -> None:
        if not self._recording:
            return
        transport = self._transport
        if transport is None or not transport.is_open:
            return
        frame = self._processor.process(pcm)
        if frame.loudness is not None:
            self._loudness = frame.loudness
            self._notify()
        if not transport.send(audio_append_message(frame.audio_b64)):
            return
        self._chunks_since_commit += 1
        self._has_sent_audio = True
        if self._processor.frames_seen % self.FRAME_LOG_EVERY == 1:
            logging.debug("audio_frame_sent frame=%d pending_chunks=%d", self._processor.frames_seen, self._chunks_since_commit)

    def handle_message(self, raw: Union[bytes, str]) -> None:
        try:
            event = decode_event(raw)
        except ProtocolParseError as exc:
            logging.warning("realtime_message_dropped error=%s", exc)
            self._record_error("protocol", str(exc))
            return
        if event is None:
            return
        if isinstance(event, TranscriptDelta):
            self._handle_delta(event)
        elif isinstance(event, TranscriptCompleted):
            self._handle_completed(event)
        elif isinstance(event, TranscriptionFailed):
            logging.warning("transcription_failed item_id=%s error=%s", event.item_id, event.message)
            self._record_error("transcription", event.message)
        elif isinstance(event, ServiceError):
            logging.warning("realtime_service_error code=%s error=%s", event.code or "-", event.message)
            self.last_error = event.message
            self._record_error("realtime", event.message)

    def auto_translation_target(self, detected_code: str) -> Optional[str]:
        mapped = to_selector_code(detected_code)
        language_a, language_b = self._language_a, self._language_b
        if not mapped or not language_a or not language_b or language_a == language_b:
            return None
        if mapped == language_a:
            return language_b
        if mapped == language_b:
            return language_a
        return None

    async def close(self) -> None:
        transport = self._teardown()
        if transport is not None:
            await transport.close()

    def shutdown_sync(self) -> None:
        transport = self._teardown()
        if transport is not None:
            transport.close_nowait()

    def _teardown(self) -> Optional[RealtimeTransport]:
        if self._closed:
            return None
        self._closed = True
        logging.info("session_teardown")
        self._stop_capture()
        self._recording = False
        self._scheduler.cancel()
        self._dispatcher.cancel_pending()
        # Callbacks from the closing connection are stale from here on.
        self._connection_generation += 1
        transport, self._transport = self._transport, None
        if self._metrics is not None:
            summary = self._metrics.finalize_session()
            if summary:
                logging.info("session_summary %s", summary)
        self._notify()
        return transport

    def _handle_delta(self, event: TranscriptDelta) -> None:
        if not event.delta:
            return
        self._interim_text += event.delta
        if self._recording:
            self._scheduler.reset()
        self._notify()

    def _handle_completed(self, event: TranscriptCompleted) -> None:
        text = event.transcript.strip()
        if not text:
            logging.info("transcript_skipped reason=empty item_id=%s", event.item_id)
            return
        detected_code = self._detector(text)
        transcript = Transcript(
            id=new_transcript_id(),
            timestamp=datetime.now(),
            text=text,
            detected_language=detected_code,
            detected_language_name=detector_language_name(detected_code),
            logprobs=event.logprobs,
        )
        self._store.prepend(transcript)
        self._interim_text = ""
        logging.info(
            "transcript_completed id=%s language=%s tokens=%d",
            transcript.id,
            detected_code,
            len(event.logprobs or ()),
        )
        if self._metrics is not None:
            self._metrics.record_transcript(transcript)

        target_code = self.auto_translation_target(detected_code)
        if target_code is not None:
            self._dispatcher.schedule_auto_translation(
                transcript.id, text, target_code, selector_language_name(target_code)
            )
        else:
            logging.debug("auto_translation_not_needed language=%s", detected_code)

        if self._recording:
            self._scheduler.reset()
        self._notify()

    def _on_commit_deadline(self) -> bool:
        if not self._recording:
            return False
        self.commit(trigger="auto")
        return self._recording

    def _on_transport_message(self, generation: int, raw: Union[bytes, str]) -> None:
        if generation != self._connection_generation:
            return
        self.handle_message(raw)

    def _on_transport_error(self, generation: int, exc: Exception) -> None:
        if generation != self._connection_generation:
            return
        self.last_error = str(exc)
        logging.warning("realtime_connection_error error=%s", exc)
        self._record_error("connection", str(exc))
        self._notify()

    def _on_transport_closed(self, generation: int, reason: str) -> None:
        if generation != self._connection_generation:
            return
        logging.info("session_connection_closed reason=%s", reason)
        self._stop_capture()
        self._recording = False
        self._transport = None
        self._scheduler.cancel()
        # The service discards its buffer with the connection.
        self._chunks_since_commit = 0
        self._has_sent_audio = False
        self._notify()

    def _begin_capture(self) -> bool:
        self._recording = True
        if self._audio_source is not None:
            try:
                self._audio_source.start()
            except Exception as exc:  # noqa: BLE001 - device boundary
                logging.warning("audio_source_start_failed error=%s", exc)
                self.last_error = str(exc)
                self._recording = False
                self._notify()
                return False
        self._scheduler.arm()
        self._notify()
        return True

    def _stop_capture(self) -> None:
        if self._audio_source is None:
            return
        try:
            self._audio_source.stop()
        except Exception as exc:  # noqa: BLE001 - device boundary
            logging.warning("audio_source_stop_failed error=%s", exc)

    def _session_message(self) -> dict:
        return session_update_message(
            self._model,
            language_hint=self._settings.language_hint,
            request_logprobs=self._settings.request_logprobs,
        )

    def _default_transport_factory(
        self,
        on_message: Callable[[Union[bytes, str]], None],
        on_error: Callable[[Exception], None],
        on_close: Callable[[str], None],
    ) -> RealtimeTransport:
        return RealtimeTransport(
            api_key=self._settings.api_key,
            session_model=self._settings.session_model,
            on_message=on_message,
            on_error=on_error,
            on_close=on_close,
        )

    def _record_error(self, stage: str, error: str) -> None:
        if self._metrics is not None:
            self._metrics.record_error(stage, error)

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception:  # noqa: BLE001 - observer boundary
            logging.exception("session_observer_failed")
