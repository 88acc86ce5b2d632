from __future__ import annotations

import argparse
import asyncio
import atexit
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, TextIO

from dotenv import load_dotenv

from config_utils import SessionSettings
from languages import SELECTOR_LANGUAGES, is_selector_code, selector_language_name
from metrics_reporter import SessionMetricsReporter
from session_controller import TranscriptionSession
from transcripts import Transcript, format_transcripts_for_export
from translation_service import TranslationServiceError, TranslationUnavailableError

HELP_TEXT = """Commands:
  start | stop | commit
  list
  translate <n> <language-code>
  delete <n> | clear
  export [path]
  model <name>
  languages <code-a> <code-b>
  quit"""


class ConsoleController:
    """Renders session state to a text stream and executes typed commands."""

    def __init__(self, out: TextIO = sys.stdout) -> None:
        self._out = out
        self.session: Optional[TranscriptionSession] = None
        self._rendered: dict[str, str] = {}
        self._last_interim = ""
        self._last_recording = False
        self._translating: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    def attach(self, session: TranscriptionSession) -> None:
        self.session = session

    def render(self, session: TranscriptionSession) -> None:
        if session.is_recording != self._last_recording:
            self._last_recording = session.is_recording
            self._write("[recording]" if session.is_recording else "[stopped]")
        # Oldest first so new lines appear in speaking order.
        for transcript in reversed(session.transcripts):
            previous = self._rendered.get(transcript.id)
            if previous == transcript.text:
                continue
            self._rendered[transcript.id] = transcript.text
            self._write(self._format_line(transcript, updated=previous is not None))
        interim = session.interim_text
        if interim and interim != self._last_interim:
            self._write(f"  ... {interim}")
        self._last_interim = interim

    async def handle_command(self, line: str) -> bool:
        session = self.session
        if session is None:
            return False
        parts = line.strip().split()
        if not parts:
            return True
        command, args = parts[0].lower(), parts[1:]
        if command in {"quit", "exit", "q"}:
            return False
        if command == "start":
            if not await session.start():
                self._write(f"Could not start recording: {session.last_error or 'unknown error'}")
        elif command == "stop":
            session.stop()
        elif command == "commit":
            if not session.is_recording:
                self._write("Not recording.")
            else:
                session.manual_commit()
        elif command == "list":
            self._list(session)
        elif command == "translate" and len(args) == 2:
            self._start_translation(session, args[0], args[1].lower())
        elif command == "delete" and len(args) == 1:
            transcript = self._resolve(session, args[0])
            if transcript is not None and session.delete_transcript(transcript.id):
                self._rendered.pop(transcript.id, None)
                self._write(f"Deleted transcript {args[0]}.")
        elif command == "clear":
            session.clear_all()
            self._rendered.clear()
            self._write("Cleared all transcripts.")
        elif command == "export":
            self._export(session, args[0] if args else None)
        elif command == "model" and len(args) == 1:
            session.update_model(args[0])
            self._write(f"Model: {session.model}")
        elif command == "languages" and len(args) == 2:
            if not all(is_selector_code(code.lower()) for code in args):
                self._write("Unknown language code. Known: " + ", ".join(code for code, _ in SELECTOR_LANGUAGES))
            else:
                session.set_languages(args[0], args[1])
                self._write(f"Languages: {session.languages[0]} <-> {session.languages[1]}")
        else:
            self._write(HELP_TEXT)
        return True

    async def wait_for_translations(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _start_translation(self, session: TranscriptionSession, index: str, code: str) -> None:
        transcript = self._resolve(session, index)
        if transcript is None:
            return
        if not is_selector_code(code):
            self._write("Target language not found.")
            return
        # One explicit translation per transcript at a time.
        if transcript.id in self._translating:
            self._write("Translation already in progress.")
            return
        self._translating.add(transcript.id)
        task = asyncio.create_task(self._translate(session, transcript.id, selector_language_name(code)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _translate(self, session: TranscriptionSession, transcript_id: str, target_name: str) -> None:
        try:
            await session.translate(transcript_id, target_name)
        except (TranslationUnavailableError, TranslationServiceError) as exc:
            self._write(f"Translation error: {exc}")
        finally:
            self._translating.discard(transcript_id)

    def _resolve(self, session: TranscriptionSession, index: str) -> Optional[Transcript]:
        transcripts = session.transcripts
        try:
            position = int(index)
        except ValueError:
            position = 0
        if not 1 <= position <= len(transcripts):
            self._write(f"No transcript #{index}.")
            return None
        return transcripts[position - 1]

    def _list(self, session: TranscriptionSession) -> None:
        transcripts = session.transcripts
        if not transcripts:
            self._write("No transcripts.")
            return
        for position, transcript in enumerate(transcripts, start=1):
            self._write(f"{position:>3}. {self._format_line(transcript)}")

    def _export(self, session: TranscriptionSession, path: Optional[str]) -> None:
        text = format_transcripts_for_export(session.transcripts)
        if not text:
            self._write("There are no transcripts to export.")
            return
        if path is None:
            self._write(text)
            return
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text + "\n", encoding="utf-8")
        self._write(f"Exported {len(session.transcripts)} transcripts to {target}.")

    @staticmethod
    def _format_line(transcript: Transcript, updated: bool = False) -> str:
        stamp = transcript.timestamp.strftime("%H:%M:%S")
        language = transcript.detected_language_name or "?"
        prefix = "~" if updated else " "
        line = f"{prefix}[{stamp}] ({language}) {transcript.text}"
        uncertain = transcript.uncertain_tokens
        if uncertain:
            line += f"  [unsure: {', '.join(uncertain)}]"
        return line

    def _write(self, text: str) -> None:
        print(text, file=self._out, flush=True)


def start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue[Optional[str]]) -> threading.Thread:
    def _read() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, None)

    # Daemon thread so a blocked readline never holds up interpreter exit.
    reader = threading.Thread(target=_read, name="stdin-reader", daemon=True)
    reader.start()
    return reader


def install_shutdown_hooks(
    loop: asyncio.AbstractEventLoop,
    session: TranscriptionSession,
    lines: asyncio.Queue[Optional[str]],
) -> None:
    # Last-resort teardown if the interpreter exits before run() could close the session.
    atexit.register(session.shutdown_sync)
    terminating = False

    def _on_terminate() -> None:
        nonlocal terminating
        if terminating:
            logging.warning("forced_shutdown")
            session.shutdown_sync()
        terminating = True
        lines.put_nowait(None)

    try:
        loop.add_signal_handler(signal.SIGTERM, _on_terminate)
    except (NotImplementedError, RuntimeError):
        logging.debug("sigterm_handler_unavailable")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Streaming microphone transcription with automatic translation")
    parser.add_argument("--model", help="Transcription model (default: TRANSCRIPTION_MODEL or gpt-4o-mini-transcribe)")
    parser.add_argument("--language-a", help="First conversation language code (default: LANGUAGE_A or de)")
    parser.add_argument("--language-b", help="Second conversation language code (default: LANGUAGE_B or en)")
    parser.add_argument("--device", help="Substring of the input device name to record from")
    parser.add_argument("--gain", type=float, help="Software gain applied to captured audio")
    parser.add_argument("--no-autostart", action="store_true", help="Wait for the 'start' command")
    parser.add_argument("--list-devices", action="store_true", help="List audio input devices and exit")
    return parser


def apply_overrides(settings: SessionSettings, args: argparse.Namespace) -> SessionSettings:
    if args.model:
        settings.model = args.model
    if args.language_a:
        settings.language_a = args.language_a.lower()
    if args.language_b:
        settings.language_b = args.language_b.lower()
    if args.device:
        settings.input_device = args.device
    if args.gain and args.gain > 0:
        settings.audio_gain = args.gain
    return settings


async def run(args: argparse.Namespace) -> int:
    # Imported here so --help works on machines without PortAudio.
    from audio_listener import MicrophoneListener

    settings = apply_overrides(SessionSettings.from_env(), args)
    if not settings.api_key:
        print("Error: Missing OPENAI_API_KEY. Set it in .env or environment.", file=sys.stderr)
        return 1

    loop = asyncio.get_running_loop()
    console = ConsoleController()
    metrics = SessionMetricsReporter(
        enabled=settings.metrics_enabled,
        output_path=settings.metrics_output_path,
        summary_path=settings.metrics_summary_path,
    )
    session = TranscriptionSession(settings, loop=loop, metrics=metrics, on_change=console.render)
    console.attach(session)
    session.attach_audio_source(
        MicrophoneListener(
            loop,
            session.handle_audio_frame,
            sample_rate=settings.sample_rate,
            frame_ms=settings.frame_ms,
            preferred_device=settings.input_device,
        )
    )

    lines: asyncio.Queue[Optional[str]] = asyncio.Queue()
    start_stdin_reader(loop, lines)
    install_shutdown_hooks(loop, session, lines)
    print(HELP_TEXT, flush=True)
    try:
        if not args.no_autostart and not await session.start():
            print(f"Could not start recording: {session.last_error or 'unknown error'}", file=sys.stderr)
        while True:
            line = await lines.get()
            if line is None or not await console.handle_command(line):
                break
        session.stop()
        await console.wait_for_translations()
    finally:
        await session.close()
    return 0


def main() -> None:
    load_dotenv()
    log_level_name = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(message)s")

    args = build_parser().parse_args()
    if args.list_devices:
        from audio_listener import MicrophoneListener

        print("Available audio input devices:")
        for name in MicrophoneListener.list_input_devices():
            print(f"  {name}")
        return

    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
