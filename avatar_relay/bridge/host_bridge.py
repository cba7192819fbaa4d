"""
Host Bridge

Bidirectional message channel between the relay and the embedding host
application. Outbound messages (motion data, answers, local ICE
candidates) are serialized to JSON text and handed to the attached
channel. Inbound text is parsed into typed signaling messages and
dispatched to named entry points.

Entry points may be invoked before the relay has registered its handlers;
such calls are buffered and replayed in order on registration. After
unregister() (teardown) later calls are dropped.
"""

import asyncio
import inspect
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from avatar_relay.errors import SignalingError
from avatar_relay.signaling.messages import IceCandidate, Offer, ReadyNotice, parse_message
from avatar_relay.tracking.blend_shapes import FaceFrame

EntryPoint = Callable[[Any], Union[Awaitable[Any], Any]]


class HostBridge:
    """Message channel to the host application."""

    RECEIVE_OFFER = "receive_offer"
    RECEIVE_ICE_CANDIDATE = "receive_ice_candidate"
    ENTRY_POINTS = (RECEIVE_OFFER, RECEIVE_ICE_CANDIDATE)

    # Inbound message class -> entry point
    ROUTES = {
        Offer: RECEIVE_OFFER,
        IceCandidate: RECEIVE_ICE_CANDIDATE,
    }

    def __init__(self, logger=None):
        self.logger = logger
        self._channel: Optional[Callable[[str], Any]] = None
        self._handlers: Dict[str, EntryPoint] = {}
        self._buffered: List[Tuple[str, Any]] = []
        self._unregistered = False
        self._lock = asyncio.Lock()

        # Statistics
        self.messages_sent = 0
        self.messages_received = 0
        self.calls_dropped = 0
        self.handler_errors = 0

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    # =========================================================================
    # Channel
    # =========================================================================

    @property
    def has_channel(self) -> bool:
        return self._channel is not None

    @property
    def registered(self) -> bool:
        return bool(self._handlers)

    def attach_channel(self, channel: Callable[[str], Any]):
        """
        Attach the host channel.

        Args:
            channel: Callable accepting one JSON text message
        """
        self._channel = channel
        self.log("info", "Host channel attached")
        if self.registered:
            self.send(ReadyNotice().to_dict())

    def detach_channel(self, channel: Optional[Callable[[str], Any]] = None):
        """Detach the host channel; pass the channel to detach only if it is still current."""
        if channel is not None and channel is not self._channel:
            return
        self._channel = None
        self.log("info", "Host channel detached")

    def send(self, message: Dict[str, Any]) -> bool:
        """
        Serialize a message and hand it to the host channel.

        Returns:
            True if a channel was attached and accepted the message
        """
        channel = self._channel
        if channel is None:
            return False

        try:
            channel(json.dumps(message))
        except Exception as e:
            self.log("error", f"Failed to send to host: {e}")
            return False

        self.messages_sent += 1
        return True

    def send_motion(self, frame: FaceFrame) -> bool:
        """Send a FaceFrame as a motion message."""
        return self.send(frame.to_dict())

    # =========================================================================
    # Entry points
    # =========================================================================

    async def register(self, handlers: Dict[str, EntryPoint]):
        """
        Register inbound entry points and replay calls buffered before
        registration, then notify the host that the relay is ready.
        """
        unknown = set(handlers) - set(self.ENTRY_POINTS)
        if unknown:
            raise ValueError(f"Unknown entry points: {sorted(unknown)}")

        async with self._lock:
            self._handlers = dict(handlers)
            self._unregistered = False

            buffered, self._buffered = self._buffered, []
            for name, data in buffered:
                handler = self._handlers.get(name)
                if handler is None:
                    self.calls_dropped += 1
                    continue
                await self._dispatch(name, handler, data)

        if buffered:
            self.log("info", f"Replayed {len(buffered)} buffered host call(s)")
        self.send(ReadyNotice().to_dict())

    def unregister(self):
        """Remove all entry points; later calls are dropped."""
        self._handlers = {}
        self._buffered = []
        self._unregistered = True

    async def invoke(self, name: str, data: Any) -> bool:
        """
        Invoke a named entry point. Never raises.

        Returns:
            True if a handler ran to completion
        """
        async with self._lock:
            if name not in self.ENTRY_POINTS:
                self.log("warning", f"Unknown entry point: {name}")
                self.calls_dropped += 1
                return False

            if self._unregistered:
                self.log("debug", f"Dropping {name} call after teardown")
                self.calls_dropped += 1
                return False

            handler = self._handlers.get(name)
            if handler is None:
                self._buffered.append((name, data))
                return False

            return await self._dispatch(name, handler, data)

    async def _dispatch(self, name: str, handler: EntryPoint, data: Any) -> bool:
        try:
            result = handler(data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.handler_errors += 1
            self.log("error", f"Error in {name}: {e}")
            return False
        return True

    async def receive_text(self, text: str) -> bool:
        """Parse an inbound JSON message from the host and route it by type."""
        self.messages_received += 1
        try:
            message = json.loads(text)
        except json.JSONDecodeError as e:
            self.log("warning", f"Invalid JSON from host: {e}")
            return False

        try:
            signal = parse_message(message)
        except SignalingError as e:
            self.log("warning", f"Invalid host message: {e}")
            return False

        name = self.ROUTES.get(type(signal))
        if name is None:
            self.log("warning", f"Unhandled host message: {type(signal).__name__}")
            return False

        return await self.invoke(name, signal)

    @property
    def pending_calls(self) -> int:
        return len(self._buffered)

    def get_status(self) -> Dict[str, Any]:
        return {
            "channel_attached": self.has_channel,
            "registered": self.registered,
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
            "pending_calls": len(self._buffered),
            "calls_dropped": self.calls_dropped,
            "handler_errors": self.handler_errors,
        }
