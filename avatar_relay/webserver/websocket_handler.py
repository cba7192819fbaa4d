"""
Avatar Relay Host WebSocket Handler

Accepts the host application's WebSocket connection and makes it the Host
Bridge channel. One host is served at a time; a new connection replaces
the previous one.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from aiohttp import web, WSMsgType

from avatar_relay.bridge.host_bridge import HostBridge
from avatar_relay.webserver.state_manager import StateManager

# Outbound messages queued per host before new ones are dropped
OUTBOX_SIZE = 1024


@dataclass
class HostClient:
    """Represents the connected host application."""
    id: str
    ws: web.WebSocketResponse
    connected_at: float = field(default_factory=time.time)
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_SIZE))
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    writer_task: Optional[asyncio.Task] = None
    dispatch_task: Optional[asyncio.Task] = None
    dropped: int = 0

    def enqueue(self, text: str):
        """Queue a text message for the writer task."""
        try:
            self.outbox.put_nowait(text)
        except asyncio.QueueFull:
            self.dropped += 1


class HostSocketHandler:
    """Handles the host WebSocket connection."""

    def __init__(self, bridge: HostBridge, state_manager: StateManager, logger=None):
        self.bridge = bridge
        self.state_manager = state_manager
        self.logger = logger
        self.client: Optional[HostClient] = None
        self._lock = asyncio.Lock()

    def log(self, level: str, message: str):
        """Log a message if logger is available."""
        if self.logger:
            getattr(self.logger, level)(message)

    async def handle_connection(self, request: web.Request) -> web.WebSocketResponse:
        """Handle a new host WebSocket connection."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        client = HostClient(id=str(uuid.uuid4())[:8], ws=ws)
        channel = client.enqueue

        async with self._lock:
            previous = self.client
            self.client = client

        if previous is not None:
            self.log('info', f'Host {client.id} replaces host {previous.id}')
            await self._close_client(previous)

        client.writer_task = asyncio.create_task(self._writer(client))
        client.dispatch_task = asyncio.create_task(self._dispatcher(client))
        self.bridge.attach_channel(channel)
        self.state_manager.set_host_connected(True)
        self.log('info', f'Host connected: {client.id}')

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    client.inbox.put_nowait(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    self.log('error', f'WebSocket error: {ws.exception()}')
                    break
        finally:
            async with self._lock:
                current = self.client is client
                if current:
                    self.client = None

            # Messages already read are still handed to the bridge
            await self._drain_inbox(client)

            if current:
                self.bridge.detach_channel(channel)
                self.state_manager.set_host_connected(False)
            await self._stop_writer(client)

            if client.dropped:
                self.log('warning', f'Host {client.id}: {client.dropped} outbound messages dropped')
            self.log('info', f'Host disconnected: {client.id}')

        return ws

    async def _writer(self, client: HostClient):
        """Send queued messages to the host in order."""
        while True:
            text = await client.outbox.get()
            if client.ws.closed:
                break
            try:
                await client.ws.send_str(text)
            except ConnectionResetError as e:
                self.log('warning', f'Host {client.id} connection lost: {e}')
                break
            except Exception as e:
                self.log('error', f'Failed to send to host {client.id}: {e}')

    async def _dispatcher(self, client: HostClient):
        """Hand inbound messages to the bridge in arrival order, off the read loop."""
        while True:
            text = await client.inbox.get()
            if text is None:
                break
            await self.bridge.receive_text(text)

    async def _drain_inbox(self, client: HostClient):
        task = client.dispatch_task
        client.dispatch_task = None
        if task:
            client.inbox.put_nowait(None)
            await task

    async def _stop_writer(self, client: HostClient):
        task = client.writer_task
        client.writer_task = None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _close_client(self, client: HostClient):
        await self._stop_writer(client)
        try:
            await client.ws.close()
        except Exception as e:
            self.log('debug', f'Error closing host {client.id}: {e}')

    async def close_all_connections(self):
        """Close the host connection, if any."""
        async with self._lock:
            client = self.client
            self.client = None
        if client is not None:
            self.bridge.detach_channel()
            self.state_manager.set_host_connected(False)
            await self._close_client(client)
