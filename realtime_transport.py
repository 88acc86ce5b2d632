from __future__ import annotations

import asyncio
import logging
import os
from contextlib import suppress
from enum import Enum
from typing import Any, Callable, Optional, Union

from openai import AsyncOpenAI
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from config_utils import read_int_env


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class RealtimeTransport:
    """One realtime transcription connection.

    ``send`` never blocks and never raises: messages are queued and written by a
    sender task, and dropped while the connection is not open. Inbound frames are
    handed untouched to ``on_message``. ``on_close`` fires once per opened
    connection, whoever closed it.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        session_model: str = "gpt-realtime-mini",
        on_message: Optional[Callable[[Union[bytes, str]], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_close: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or ""
        self._client: Optional[AsyncOpenAI] = None
        self._session_model = session_model
        self._on_message = on_message
        self._on_error = on_error
        self._on_close = on_close
        self._queue_maxsize = read_int_env("REALTIME_OUTBOUND_QUEUE_MAXSIZE", 256)
        self._state = ConnectionState.IDLE
        self._connection = None
        self._outbound: Optional[asyncio.Queue[dict[str, Any]]] = None
        self._sender_task: Optional[asyncio.Task[None]] = None
        self._receiver_task: Optional[asyncio.Task[None]] = None
        self._closing_task: Optional[asyncio.Task[None]] = None
        self.last_error: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    async def open(self, session_message: dict[str, Any]) -> bool:
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return self.is_open
        self._state = ConnectionState.CONNECTING
        self.last_error = None
        connection = None
        try:
            if self._client is None:
                if not self._api_key:
                    raise RuntimeError("OPENAI_API_KEY is required for realtime transcription.")
                self._client = AsyncOpenAI(api_key=self._api_key)
            connection = await self._client.realtime.connect(model=self._session_model).enter()
            await connection.send(session_message)
        except Exception as exc:  # noqa: BLE001 - realtime startup boundary
            self._state = ConnectionState.CLOSED
            if connection is not None:
                with suppress(Exception):
                    await connection.close()
            logging.warning("realtime_open_failed session_model=%s error=%s", self._session_model, exc)
            self._report_error(exc)
            return False

        if self._state is not ConnectionState.CONNECTING:
            # close() was called while the handshake was in flight.
            with suppress(Exception):
                await connection.close()
            return False

        self._connection = connection
        self._outbound = asyncio.Queue(maxsize=self._queue_maxsize)
        self._state = ConnectionState.OPEN
        self._sender_task = asyncio.create_task(self._send_loop(connection, self._outbound), name="realtime-send")
        self._receiver_task = asyncio.create_task(self._receive_loop(connection), name="realtime-recv")
        logging.info("realtime_open session_model=%s", self._session_model)
        return True

    def send(self, message: dict[str, Any]) -> bool:
        if self._state is not ConnectionState.OPEN or self._outbound is None:
            logging.debug("realtime_send_dropped reason=not_open type=%s", message.get("type"))
            return False
        try:
            self._outbound.put_nowait(message)
        except asyncio.QueueFull:
            logging.warning("realtime_send_dropped reason=queue_full type=%s", message.get("type"))
            return False
        return True

    async def close(self) -> None:
        await self._shutdown("client_close")

    def close_nowait(self) -> None:
        if self._state is ConnectionState.CONNECTING:
            self._state = ConnectionState.CLOSED
            return
        if self._state is not ConnectionState.OPEN:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._closing_task = loop.create_task(self._shutdown("teardown"))
            return
        self._state = ConnectionState.CLOSED
        for task in (self._sender_task, self._receiver_task):
            if task is not None and not task.done():
                task.cancel()
        self._sender_task = None
        self._receiver_task = None
        self._connection = None
        self._outbound = None
        self._notify_closed("teardown")

    async def _send_loop(self, connection, outbound: asyncio.Queue[dict[str, Any]]) -> None:
        while True:
            message = await outbound.get()
            try:
                await connection.send(message)
            except ConnectionClosed:
                logging.info("realtime_send_stopped reason=connection_closed")
                return
            except Exception as exc:  # noqa: BLE001 - hot path, drop and keep streaming
                logging.warning("realtime_send_failed type=%s error=%s", message.get("type"), exc)

    async def _receive_loop(self, connection) -> None:
        reason = "server_closed"
        try:
            while True:
                raw = await connection.recv_bytes()
                self._dispatch(raw)
        except asyncio.CancelledError:
            raise
        except ConnectionClosedOK:
            reason = "server_closed"
        except ConnectionClosed as exc:
            reason = "connection_lost"
            self._report_error(exc)
        except Exception as exc:  # noqa: BLE001 - realtime boundary
            reason = "receive_failed"
            self._report_error(exc)
        await self._shutdown(reason)

    def _dispatch(self, raw: Union[bytes, str]) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(raw)
        except Exception:  # noqa: BLE001 - a handler bug must not end the stream
            logging.exception("realtime_message_handler_failed")

    async def _shutdown(self, reason: str) -> None:
        if self._state is ConnectionState.CONNECTING:
            self._state = ConnectionState.CLOSED
            return
        if self._state is not ConnectionState.OPEN:
            return
        self._state = ConnectionState.CLOSED
        current = asyncio.current_task()
        tasks = [task for task in (self._sender_task, self._receiver_task) if task is not None and task is not current]
        self._sender_task = None
        self._receiver_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
        connection, self._connection = self._connection, None
        self._outbound = None
        if connection is not None:
            with suppress(Exception):
                await connection.close()
        self._notify_closed(reason)

    def _notify_closed(self, reason: str) -> None:
        logging.info("realtime_closed reason=%s", reason)
        if self._on_close is None:
            return
        try:
            self._on_close(reason)
        except Exception:  # noqa: BLE001 - observer boundary
            logging.exception("realtime_close_handler_failed")

    def _report_error(self, exc: Exception) -> None:
        self.last_error = str(exc)
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:  # noqa: BLE001 - observer boundary
            logging.exception("realtime_error_handler_failed")
