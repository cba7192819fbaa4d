"""
Tests for signaling messages and the signaling state machine.
"""

import asyncio
import pytest
import sys
import os

from aiortc.sdp import candidate_from_sdp

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from avatar_relay.errors import SignalingError
from avatar_relay.signaling.messages import (
    Answer,
    IceCandidate,
    Offer,
    ReadyNotice,
    parse_message,
)
from avatar_relay.signaling.session import ConnectionState
from avatar_relay.signaling.state_machine import SignalingState, SignalingStateMachine
from avatar_relay.tracking.video import VideoSink

from mocks import MockPeerFactory, MockTrack, candidate_line, ice_payload, run_async

OFFER = {"sdp": "v=0\r\no=- 1 2 IN IP4 127.0.0.1\r\n"}


class TestMessages:
    """Test wire message parsing and serialization."""

    def test_parse_offer(self):
        message = parse_message({"type": "offer", "data": OFFER})
        assert message == Offer(sdp=OFFER["sdp"])

    def test_parse_offer_with_description_object(self):
        message = parse_message({"type": "offer", "data": {"sdp": {"type": "offer", "sdp": "v=0"}}})
        assert message.sdp == "v=0"

    def test_parse_ice_candidate(self):
        message = parse_message({"type": "iceCandidate", "data": ice_payload(50001, "0", 0)})
        assert message == IceCandidate(candidate=candidate_line(50001), sdp_mid="0", sdp_mline_index=0)

    def test_invalid_messages(self):
        with pytest.raises(SignalingError):
            parse_message({"type": "bogus"})
        with pytest.raises(SignalingError):
            parse_message({"type": "offer", "data": {}})
        with pytest.raises(SignalingError):
            parse_message({"type": "iceCandidate", "data": {"candidate": "not-an-object"}})
        with pytest.raises(SignalingError):
            parse_message(["offer"])

    def test_answer_shape(self):
        assert Answer(sdp="v=0").to_dict() == {
            "type": "answer",
            "data": {"sdp": "v=0", "type": "answer"},
        }

    def test_ice_candidate_shape(self):
        candidate = IceCandidate(candidate=candidate_line(50001), sdp_mid="0", sdp_mline_index=0)
        assert candidate.to_dict() == {
            "type": "iceCandidate",
            "data": {
                "type": "ice",
                "candidate": {
                    "candidate": candidate_line(50001),
                    "sdpMid": "0",
                    "sdpMLineIndex": 0,
                },
            },
        }

    def test_ready_shape(self):
        assert ReadyNotice().to_dict() == {"type": "ready"}


class TestSignalingStateMachine:
    """Test offer/answer negotiation and ICE handling."""

    def setup_method(self):
        self.sent = []
        self.statuses = []
        self.factory = MockPeerFactory()

    def make_machine(self, factory=None, video_sink=None):
        machine = SignalingStateMachine(
            send=self.sent.append,
            video_sink=video_sink,
            ice_servers=["stun:stun.l.google.com:19302"],
            peer_factory=factory or self.factory,
        )
        machine.on_status(self.statuses.append)
        return machine

    def answers(self):
        return [m for m in self.sent if m["type"] == "answer"]

    def test_offer_yields_one_answer(self):
        async def _test():
            machine = self.make_machine()

            assert await machine.handle_offer(OFFER)

            assert len(self.answers()) == 1
            assert self.answers()[0]["data"]["type"] == "answer"
            assert self.answers()[0]["data"]["sdp"].startswith("v=0")
            assert machine.state == SignalingState.LOCAL_DESCRIPTION_SET
            assert self.factory.last.remoteDescription.type == "offer"
            assert self.factory.last.remoteDescription.sdp == OFFER["sdp"]
            assert self.factory.last.ice_servers == ["stun:stun.l.google.com:19302"]

        run_async(_test())

    def test_early_candidates_applied_in_order(self):
        async def _test():
            machine = self.make_machine()

            for port in (50001, 50002, 50003):
                assert not await machine.handle_ice_candidate(ice_payload(port))
            assert len(machine.early_candidates) == 3

            await machine.handle_offer(OFFER)

            assert self.factory.last.added_ports == [50001, 50002, 50003]
            assert machine.early_candidates == []

        run_async(_test())

    def test_candidates_during_remote_description_are_queued(self):
        async def _test():
            machine = self.make_machine()
            gate = asyncio.Event()

            def factory(ice_servers):
                pc = self.factory(ice_servers)
                pc.remote_gate = gate
                return pc

            machine.peer_factory = factory
            offer_task = asyncio.create_task(machine.handle_offer(OFFER))
            await asyncio.sleep(0)
            assert machine.state == SignalingState.ANSWERING

            await machine.handle_ice_candidate(ice_payload(50001))
            await machine.handle_ice_candidate(ice_payload(50002))
            assert self.factory.last.added_ports == []

            gate.set()
            assert await offer_task

            # Applied directly once the remote description exists
            assert await machine.handle_ice_candidate(ice_payload(50003))
            assert self.factory.last.added_ports == [50001, 50002, 50003]

        run_async(_test())

    def test_candidate_sdp_mid_preserved(self):
        async def _test():
            machine = self.make_machine()
            await machine.handle_offer(OFFER)
            await machine.handle_ice_candidate(ice_payload(50001, sdp_mid="video", sdp_mline_index=1))

            candidate = self.factory.last.added_candidates[0]
            assert candidate.sdpMid == "video"
            assert candidate.sdpMLineIndex == 1
            assert candidate.ip == "192.168.1.2"

        run_async(_test())

    def test_invalid_candidate_ignored(self):
        async def _test():
            machine = self.make_machine()
            assert not await machine.handle_ice_candidate({"candidate": None})
            assert machine.early_candidates == []

        run_async(_test())

    def test_remote_description_failure(self):
        async def _test():
            machine = self.make_machine(factory=MockPeerFactory(fail_on=["setRemoteDescription"]))

            assert not await machine.handle_offer(OFFER)

            assert machine.state == SignalingState.FAILED
            assert not machine.connected
            assert self.answers() == []
            assert self.statuses[-1].startswith("Connection failed")

        run_async(_test())

    def test_answer_failure_then_retry(self):
        async def _test():
            failing = MockPeerFactory(fail_on=["createAnswer"])
            machine = self.make_machine(factory=failing)

            assert not await machine.handle_offer(OFFER)
            assert machine.state == SignalingState.FAILED

            machine.peer_factory = self.factory
            assert await machine.handle_offer(OFFER)

            assert failing.last.closed
            assert machine.state == SignalingState.LOCAL_DESCRIPTION_SET
            assert len(self.answers()) == 1

        run_async(_test())

    def test_second_offer_rejected_while_live(self):
        async def _test():
            machine = self.make_machine()

            assert await machine.handle_offer(OFFER)
            assert not await machine.handle_offer(OFFER)

            assert len(self.factory.created) == 1
            assert len(self.answers()) == 1
            assert machine.offers_rejected == 1
            assert machine.state == SignalingState.LOCAL_DESCRIPTION_SET
            assert "rejected" in machine.status

        run_async(_test())

    def test_connected_attaches_first_video_track(self):
        async def _test():
            sink = VideoSink()
            machine = self.make_machine(video_sink=sink)
            await machine.handle_offer(OFFER)
            pc = self.factory.last

            audio = MockTrack(kind="audio")
            video = MockTrack(kind="video")
            extra = MockTrack(kind="video")
            await pc.trigger("track", audio)
            await pc.trigger("track", video)
            await pc.trigger("track", extra)

            assert sink.track is None

            await pc.set_connection_state("connected")

            assert machine.connected
            assert machine.state == SignalingState.CONNECTED
            assert machine.status == "Connected"
            assert sink.track is video
            assert machine.session.connection_state == ConnectionState.CONNECTED

        run_async(_test())

    def test_connected_deferred_until_answer_sent(self):
        async def _test():
            machine = self.make_machine()
            gate = asyncio.Event()

            def factory(ice_servers):
                pc = self.factory(ice_servers)
                pc.remote_gate = gate
                return pc

            machine.peer_factory = factory
            offer_task = asyncio.create_task(machine.handle_offer(OFFER))
            await asyncio.sleep(0)

            await self.factory.last.set_connection_state("connected")
            assert not machine.connected

            gate.set()
            await offer_task

            assert machine.connected
            assert machine.state == SignalingState.CONNECTED

        run_async(_test())

    def test_failed_state_clears_connected(self):
        async def _test():
            machine = self.make_machine()
            await machine.handle_offer(OFFER)
            pc = self.factory.last
            await pc.set_connection_state("connected")
            assert machine.connected

            await pc.set_connection_state("failed")

            assert not machine.connected
            assert machine.state == SignalingState.FAILED

        run_async(_test())

    def gated_factory(self, gate):
        def factory(ice_servers):
            pc = self.factory(ice_servers)
            pc.remote_gate = gate
            return pc
        return factory

    def test_failed_with_queued_candidates(self):
        async def _test():
            machine = self.make_machine()
            gate = asyncio.Event()
            machine.peer_factory = self.gated_factory(gate)

            await machine.handle_ice_candidate(ice_payload(50001))
            offer_task = asyncio.create_task(machine.handle_offer(OFFER))
            await asyncio.sleep(0)
            await machine.handle_ice_candidate(ice_payload(50002))
            assert len(machine.session.pending_candidates) == 2

            await self.factory.last.set_connection_state("failed")

            assert not machine.connected
            assert machine.state == SignalingState.FAILED
            assert machine.status == "Connection failed"

            gate.set()
            assert not await offer_task

        run_async(_test())

    def test_failure_during_answer_allows_retry(self):
        async def _test():
            machine = self.make_machine()
            gate = asyncio.Event()
            machine.peer_factory = self.gated_factory(gate)

            offer_task = asyncio.create_task(machine.handle_offer(OFFER))
            await asyncio.sleep(0)
            first = self.factory.last
            await first.set_connection_state("failed")

            gate.set()
            assert not await offer_task

            # No answer for the dead connection, and the state stays failed
            assert self.answers() == []
            assert machine.state == SignalingState.FAILED

            machine.peer_factory = self.factory
            assert await machine.handle_offer(OFFER)

            assert first.closed
            assert len(self.answers()) == 1
            assert machine.state == SignalingState.LOCAL_DESCRIPTION_SET
            assert machine.offers_rejected == 0

        run_async(_test())

    def test_offer_after_failure_replaces_session(self):
        async def _test():
            machine = self.make_machine()
            await machine.handle_offer(OFFER)
            first = self.factory.last
            await first.set_connection_state("failed")

            assert await machine.handle_offer(OFFER)

            assert first.closed
            assert len(self.factory.created) == 2
            assert machine.session.pc is self.factory.last

            # Late events from the old connection are ignored
            await first.set_connection_state("connected")
            assert not machine.connected

        run_async(_test())

    def test_outbound_ice_candidate(self):
        async def _test():
            machine = self.make_machine()
            await machine.handle_offer(OFFER)

            local = candidate_from_sdp("1 1 udp 2122260223 10.0.0.5 40000 typ host")
            local.sdpMid = "0"
            local.sdpMLineIndex = 0
            await self.factory.last.trigger("icecandidate", local)
            await self.factory.last.trigger("icecandidate", None)

            ice = [m for m in self.sent if m["type"] == "iceCandidate"]
            assert len(ice) == 1
            assert ice[0]["data"]["type"] == "ice"
            candidate = ice[0]["data"]["candidate"]
            assert candidate["candidate"].startswith("candidate:1 1 udp")
            assert "10.0.0.5 40000 typ host" in candidate["candidate"]
            assert candidate["sdpMid"] == "0"
            assert candidate["sdpMLineIndex"] == 0

        run_async(_test())

    def test_invalid_offer(self):
        async def _test():
            machine = self.make_machine()
            assert not await machine.handle_offer({"nope": True})
            assert machine.session is None
            assert machine.state == SignalingState.IDLE
            assert self.factory.created == []

        run_async(_test())

    def test_teardown_closes_session(self):
        async def _test():
            machine = self.make_machine()
            await machine.handle_ice_candidate(ice_payload(50001))
            await machine.handle_offer(OFFER)
            pc = self.factory.last

            await machine.teardown()

            assert pc.closed
            assert machine.session is None
            assert machine.state == SignalingState.CLOSED
            assert not machine.connected

            # A new offer is accepted after teardown
            assert await machine.handle_offer(OFFER)

        run_async(_test())
