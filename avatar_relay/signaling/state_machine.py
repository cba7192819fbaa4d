"""
Signaling State Machine

Negotiates and maintains the peer connection between the host application
(the offerer) and the relay (the answerer).

    idle -> offer-received -> answering -> local-description-set
         -> {connected, failed, closed}

Offers and ICE candidates arrive from the Host Bridge; answers and local ICE
candidates are sent back through the `send` callable. No automatic
renegotiation is attempted: after `failed` or `closed` the host has to send
a new offer.
"""

from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from avatar_relay.errors import SessionRejectedError, SignalingError
from avatar_relay.signaling.messages import Answer, IceCandidate, Offer
from avatar_relay.signaling.session import (
    ConnectionState,
    PeerSession,
    candidate_to_message,
    create_peer_connection,
)


class SignalingState(str, Enum):
    IDLE = "idle"
    OFFER_RECEIVED = "offer-received"
    ANSWERING = "answering"
    LOCAL_DESCRIPTION_SET = "local-description-set"
    CONNECTED = "connected"
    FAILED = "failed"
    CLOSED = "closed"


# States in which a new offer replaces the existing session
REPLACEABLE_STATES = (SignalingState.IDLE, SignalingState.FAILED, SignalingState.CLOSED)

TERMINAL_STATES = (SignalingState.FAILED, SignalingState.CLOSED)
TERMINAL_CONNECTION_STATES = (ConnectionState.DISCONNECTED, ConnectionState.FAILED, ConnectionState.CLOSED)


class SignalingStateMachine:
    """
    Drives one PeerSession at a time.

    Every public coroutine is safe to call from host-triggered entry points:
    failures are logged and surfaced through the status string, never raised.
    """

    def __init__(
        self,
        send: Callable[[Dict[str, Any]], Any],
        video_sink=None,
        ice_servers: Optional[Iterable[Union[str, Dict[str, Any]]]] = None,
        peer_factory: Optional[Callable[[Any], Any]] = None,
        logger=None,
    ):
        """
        Args:
            send: Callable taking an outbound message dict (usually HostBridge.send)
            video_sink: VideoSink receiving the negotiated remote video track
            ice_servers: STUN/TURN servers for new peer connections
            peer_factory: Builds a peer connection from ice_servers
            logger: Optional logger
        """
        self._send = send
        self.video_sink = video_sink
        self.ice_servers = list(ice_servers) if ice_servers is not None else None
        self.peer_factory = peer_factory or create_peer_connection
        self.logger = logger

        self._state = SignalingState.IDLE
        self._status = "Waiting for connection..."
        self._session: Optional[PeerSession] = None
        self._early_candidates: List[IceCandidate] = []
        self.connected = False

        self._status_callbacks: List[Callable[[str], None]] = []
        self._state_callbacks: List[Callable[[SignalingState], None]] = []

        # Statistics
        self.offers_received = 0
        self.offers_rejected = 0
        self.answers_sent = 0

    def log(self, level: str, message: str):
        if self.logger:
            getattr(self.logger, level)(message)

    # =========================================================================
    # Callbacks
    # =========================================================================

    def on_status(self, callback: Callable[[str], None]):
        """Add callback for status string changes. Args: (status)"""
        self._status_callbacks.append(callback)

    def on_state(self, callback: Callable[[SignalingState], None]):
        """Add callback for state transitions. Args: (state)"""
        self._state_callbacks.append(callback)

    def _set_status(self, status: str):
        self._status = status
        for callback in self._status_callbacks:
            try:
                callback(status)
            except Exception as e:
                self.log("error", f"Status callback error: {e}")

    def _set_state(self, state: SignalingState):
        if state == self._state:
            return
        self.log("debug", f"Signaling state: {self._state.value} -> {state.value}")
        self._state = state
        for callback in self._state_callbacks:
            try:
                callback(state)
            except Exception as e:
                self.log("error", f"State callback error: {e}")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SignalingState:
        return self._state

    @property
    def status(self) -> str:
        return self._status

    @property
    def session(self) -> Optional[PeerSession]:
        return self._session

    @property
    def early_candidates(self) -> List[IceCandidate]:
        return list(self._early_candidates)

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "status": self._status,
            "connected": self.connected,
            "offers_received": self.offers_received,
            "offers_rejected": self.offers_rejected,
            "answers_sent": self.answers_sent,
            "queued_candidates": len(self._early_candidates) + (
                len(self._session.pending_candidates) if self._session else 0
            ),
        }

    # =========================================================================
    # Offer / answer
    # =========================================================================

    def _check_accepts_offer(self):
        if self._session is not None and self._state not in REPLACEABLE_STATES:
            raise SessionRejectedError(f"session is {self._state.value}")

    def _create_session(self) -> PeerSession:
        pc = self.peer_factory(self.ice_servers)
        session = PeerSession(pc, logger=self.logger)

        @pc.on("icecandidate")
        def on_icecandidate(candidate):
            if candidate is None or session is not self._session:
                return
            self._send(candidate_to_message(candidate).to_dict())

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            await self.handle_connection_state(pc.connectionState, session)

        @pc.on("track")
        def on_track(track):
            self.handle_track(track, session)

        session.queue_candidates(self._early_candidates)
        self._early_candidates = []
        return session

    async def handle_offer(self, payload: Union[Offer, Dict[str, Any]]) -> bool:
        """
        Handle an inbound offer: build a session, apply the offer and send
        back an answer.

        Returns:
            True if an answer was sent
        """
        try:
            offer = payload if isinstance(payload, Offer) else Offer.from_payload(payload)
        except SignalingError as e:
            self.log("error", f"Invalid offer: {e}")
            self._set_status(f"Invalid offer: {e}")
            return False

        self.offers_received += 1

        try:
            self._check_accepts_offer()
        except SessionRejectedError as e:
            self.offers_rejected += 1
            self.log("warning", f"Offer rejected: {e}")
            self._set_status("Offer rejected: a connection is already active")
            return False

        if self._session is not None:
            await self._close_session()

        self._set_state(SignalingState.OFFER_RECEIVED)
        self.log("info", "Received offer from host")

        session = self._create_session()
        self._session = session
        self._set_state(SignalingState.ANSWERING)
        self._set_status("Negotiating connection...")

        try:
            await session.set_remote_offer(offer.sdp)
            sdp = await session.create_answer()
        except Exception as e:
            if session is self._session:
                self.log("error", f"Error handling offer: {e}")
                self._set_state(SignalingState.FAILED)
                self._set_status(f"Connection failed: {e}")
            return False

        if session is not self._session:
            # Torn down while the answer was being created
            return False

        if self._state in TERMINAL_STATES or session.connection_state in TERMINAL_CONNECTION_STATES:
            # Transport gave up while the answer was being created
            self.log("warning", f"Dropping answer for {session.connection_state.value} connection")
            return False

        self._set_state(SignalingState.LOCAL_DESCRIPTION_SET)
        self._send(Answer(sdp=sdp).to_dict())
        self.answers_sent += 1
        self.log("info", "Sent answer to host")

        if session.connection_state == ConnectionState.CONNECTED:
            self._on_connected(session)
        else:
            self._set_status("Waiting for connection...")
        return True

    # =========================================================================
    # ICE
    # =========================================================================

    async def handle_ice_candidate(self, payload: Union[IceCandidate, Dict[str, Any]]) -> bool:
        """
        Handle a remote ICE candidate.

        Candidates are applied immediately once the remote description is
        set, otherwise queued in arrival order.

        Returns:
            True if the candidate was applied immediately
        """
        try:
            candidate = payload if isinstance(payload, IceCandidate) else IceCandidate.from_payload(payload)
        except SignalingError as e:
            self.log("error", f"Invalid ICE candidate: {e}")
            return False

        if self._session is None:
            self._early_candidates.append(candidate)
            return False

        return await self._session.add_ice_candidate(candidate)

    # =========================================================================
    # Transport events
    # =========================================================================

    async def handle_connection_state(self, state: Union[str, ConnectionState],
                                      session: Optional[PeerSession] = None):
        """Handle a connection-state report from the transport."""
        session = session or self._session
        if session is None or session is not self._session:
            return

        connection_state = ConnectionState.parse(state)
        session.connection_state = connection_state
        self.log("info", f"Connection state: {connection_state.value}")

        if connection_state == ConnectionState.CONNECTED:
            # Only counts once both descriptions are in place
            if self._state == SignalingState.LOCAL_DESCRIPTION_SET:
                self._on_connected(session)
        elif connection_state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            self.connected = False
            self._set_state(SignalingState.FAILED)
            self._set_status(f"Connection {connection_state.value}")
            await self._release_track(session)
        elif connection_state == ConnectionState.CLOSED:
            self.connected = False
            self._set_state(SignalingState.CLOSED)
            self._set_status("Connection closed")
            await self._release_track(session)

    def handle_track(self, track, session: Optional[PeerSession] = None):
        """Keep the first incoming video track; attach it once connected."""
        session = session or self._session
        if session is None or session is not self._session:
            return
        if not session.attach_track(track):
            self.log("debug", f"Ignoring extra {getattr(track, 'kind', 'unknown')} track")
            return
        self.log("info", "Received remote video track")
        if self.connected:
            self._attach_to_sink(session)

    def _on_connected(self, session: PeerSession):
        self.connected = True
        self._set_state(SignalingState.CONNECTED)
        self._set_status("Connected")
        self._attach_to_sink(session)

    def _attach_to_sink(self, session: PeerSession):
        if self.video_sink is not None and session.track is not None:
            self.video_sink.attach_track(session.track)

    async def _release_track(self, session: PeerSession):
        if self.video_sink is not None and session.track is not None and self.video_sink.track is session.track:
            await self.video_sink.detach_track()

    # =========================================================================
    # Teardown
    # =========================================================================

    async def _close_session(self):
        session = self._session
        self._session = None
        if session is None:
            return
        await self._release_track(session)
        await session.close()

    async def teardown(self):
        """Close the open session and forget queued candidates."""
        had_session = self._session is not None
        self.connected = False
        self._early_candidates = []
        await self._close_session()
        if had_session:
            self._set_state(SignalingState.CLOSED)
            self._set_status("Connection closed")
