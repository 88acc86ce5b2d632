from __future__ import annotations

import asyncio
import os
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from realtime_transport import ConnectionState, RealtimeTransport

SESSION_MESSAGE = {"type": "session.update", "session": {"type": "transcription"}}


class _FakeConnection:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: dict) -> None:
        self.sent.append(message)

    async def recv_bytes(self) -> bytes:
        item = await self._incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, item) -> None:
        self._incoming.put_nowait(item)


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


class RealtimeTransportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.messages: list = []
        self.errors: list[Exception] = []
        self.closes: list[str] = []

    def _transport(self, connection: _FakeConnection) -> RealtimeTransport:
        transport = RealtimeTransport(
            api_key="test-key",
            on_message=self.messages.append,
            on_error=self.errors.append,
            on_close=self.closes.append,
        )
        transport._client = MagicMock()
        transport._client.realtime.connect.return_value.enter = AsyncMock(return_value=connection)
        return transport

    def test_open_sends_session_update_and_queues_outbound(self) -> None:
        async def scenario():
            connection = _FakeConnection()
            transport = self._transport(connection)
            opened = await transport.open(SESSION_MESSAGE)
            queued = transport.send({"type": "input_audio_buffer.commit"})
            await _settle()
            await transport.close()
            return transport, connection, opened, queued

        transport, connection, opened, queued = asyncio.run(scenario())

        self.assertTrue(opened)
        self.assertTrue(queued)
        self.assertEqual(connection.sent, [SESSION_MESSAGE, {"type": "input_audio_buffer.commit"}])
        transport._client.realtime.connect.assert_called_once_with(model="gpt-realtime-mini")
        self.assertTrue(connection.closed)
        self.assertEqual(transport.state, ConnectionState.CLOSED)
        self.assertEqual(self.closes, ["client_close"])

    def test_send_before_open_is_dropped(self) -> None:
        transport = self._transport(_FakeConnection())

        self.assertFalse(transport.send({"type": "input_audio_buffer.append", "audio": ""}))

    def test_inbound_frames_are_forwarded_untouched(self) -> None:
        async def scenario():
            connection = _FakeConnection()
            transport = self._transport(connection)
            await transport.open(SESSION_MESSAGE)
            connection.push(b'{"type": "conversation.item.input_audio_transcription.delta", "delta": "hi"}')
            connection.push(b"not json")
            await _settle()
            await transport.close()

        asyncio.run(scenario())

        self.assertEqual(
            self.messages,
            [b'{"type": "conversation.item.input_audio_transcription.delta", "delta": "hi"}', b"not json"],
        )

    def test_server_close_notifies_once(self) -> None:
        async def scenario():
            connection = _FakeConnection()
            transport = self._transport(connection)
            await transport.open(SESSION_MESSAGE)
            connection.push(ConnectionClosedOK(None, None))
            await _settle()
            state = transport.state
            await transport.close()
            return transport, state

        transport, state = asyncio.run(scenario())

        self.assertEqual(state, ConnectionState.CLOSED)
        self.assertEqual(self.closes, ["server_closed"])
        self.assertEqual(self.errors, [])
        self.assertFalse(transport.send({"type": "input_audio_buffer.commit"}))

    def test_abnormal_close_reports_error(self) -> None:
        async def scenario():
            connection = _FakeConnection()
            transport = self._transport(connection)
            await transport.open(SESSION_MESSAGE)
            connection.push(ConnectionClosedError(None, None))
            await _settle()

        asyncio.run(scenario())

        self.assertEqual(len(self.errors), 1)
        self.assertEqual(self.closes, ["connection_lost"])

    def test_open_failure_reports_error(self) -> None:
        async def scenario():
            transport = RealtimeTransport(api_key="test-key", on_error=self.errors.append, on_close=self.closes.append)
            transport._client = MagicMock()
            transport._client.realtime.connect.return_value.enter = AsyncMock(side_effect=RuntimeError("handshake failed"))
            return transport, await transport.open(SESSION_MESSAGE)

        transport, opened = asyncio.run(scenario())

        self.assertFalse(opened)
        self.assertEqual(transport.state, ConnectionState.CLOSED)
        self.assertEqual(transport.last_error, "handshake failed")
        self.assertEqual(len(self.errors), 1)
        self.assertEqual(self.closes, [])

    def test_missing_api_key_fails_open(self) -> None:
        with patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            transport = RealtimeTransport(api_key=None, on_error=self.errors.append)

        self.assertFalse(asyncio.run(transport.open(SESSION_MESSAGE)))
        self.assertIn("OPENAI_API_KEY", transport.last_error)

    def test_close_nowait_without_loop_notifies_synchronously(self) -> None:
        async def scenario():
            real = _FakeConnection()
            transport = self._transport(real)
            await transport.open(SESSION_MESSAGE)
            return transport

        transport = asyncio.run(scenario())

        transport.close_nowait()

        self.assertEqual(transport.state, ConnectionState.CLOSED)
        self.assertEqual(self.closes, ["teardown"])


if __name__ == "__main__":
    unittest.main()
