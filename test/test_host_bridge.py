"""
Tests for the Host Bridge.
"""

import json
import pytest
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from avatar_relay.bridge.host_bridge import HostBridge
from avatar_relay.signaling.messages import IceCandidate, Offer
from avatar_relay.tracking.blend_shapes import FaceFrame, Rotation

from mocks import candidate_line, ice_payload, run_async


class MockChannel:
    """Records text handed to the host."""

    def __init__(self):
        self.messages = []

    def __call__(self, text):
        self.messages.append(text)

    @property
    def decoded(self):
        return [json.loads(m) for m in self.messages]


class TestOutbound:
    """Test outbound messages."""

    def test_send_without_channel_is_noop(self):
        bridge = HostBridge()
        assert not bridge.send({"type": "answer"})
        assert bridge.messages_sent == 0

    def test_send_serializes_json(self):
        bridge = HostBridge()
        channel = MockChannel()
        bridge.attach_channel(channel)

        assert bridge.send({"type": "answer", "data": {"sdp": "v=0", "type": "answer"}})
        assert channel.decoded == [{"type": "answer", "data": {"sdp": "v=0", "type": "answer"}}]

    def test_motion_message_shape(self):
        bridge = HostBridge()
        channel = MockChannel()
        bridge.attach_channel(channel)

        frame = FaceFrame.from_categories([("jawOpen", 0.25)], Rotation(0.1, 0.2, 0.3), 5)
        bridge.send_motion(frame)

        assert channel.decoded == [{
            "blendshapes": [{"categoryName": "jawOpen", "score": 0.25}],
            "rotation": {"x": 0.1, "y": 0.2, "z": 0.3},
        }]

    def test_channel_error_is_contained(self):
        bridge = HostBridge()

        def broken(text):
            raise ConnectionResetError("gone")

        bridge.attach_channel(broken)
        assert not bridge.send({"type": "ready"})

    def test_detach_only_current_channel(self):
        bridge = HostBridge()
        old, new = MockChannel(), MockChannel()
        bridge.attach_channel(old)
        bridge.attach_channel(new)

        bridge.detach_channel(old)
        assert bridge.has_channel

        bridge.detach_channel(new)
        assert not bridge.has_channel


class TestEntryPoints:
    """Test inbound entry point registration and dispatch."""

    def setup_method(self):
        self.calls = []

    def handlers(self):
        async def receive_offer(data):
            self.calls.append(("offer", data))

        def receive_ice_candidate(data):
            self.calls.append(("ice", data))

        return {
            HostBridge.RECEIVE_OFFER: receive_offer,
            HostBridge.RECEIVE_ICE_CANDIDATE: receive_ice_candidate,
        }

    def test_register_sends_ready(self):
        async def _test():
            bridge = HostBridge()
            channel = MockChannel()
            bridge.attach_channel(channel)

            await bridge.register(self.handlers())

            assert channel.decoded == [{"type": "ready"}]

        run_async(_test())

    def test_attach_after_register_sends_ready(self):
        async def _test():
            bridge = HostBridge()
            await bridge.register(self.handlers())

            channel = MockChannel()
            bridge.attach_channel(channel)

            assert channel.decoded == [{"type": "ready"}]

        run_async(_test())

    def test_calls_before_registration_are_replayed_in_order(self):
        async def _test():
            bridge = HostBridge()

            assert not await bridge.invoke(HostBridge.RECEIVE_ICE_CANDIDATE, {"n": 1})
            assert not await bridge.invoke(HostBridge.RECEIVE_OFFER, {"sdp": "v=0"})
            assert not await bridge.invoke(HostBridge.RECEIVE_ICE_CANDIDATE, {"n": 2})
            assert bridge.pending_calls == 3
            assert self.calls == []

            await bridge.register(self.handlers())

            assert self.calls == [("ice", {"n": 1}), ("offer", {"sdp": "v=0"}), ("ice", {"n": 2})]
            assert bridge.pending_calls == 0

        run_async(_test())

    def test_calls_after_unregister_are_dropped(self):
        async def _test():
            bridge = HostBridge()
            await bridge.register(self.handlers())
            bridge.unregister()

            assert not await bridge.invoke(HostBridge.RECEIVE_OFFER, {"sdp": "v=0"})

            assert self.calls == []
            assert bridge.pending_calls == 0
            assert bridge.calls_dropped == 1

        run_async(_test())

    def test_handler_error_never_escapes(self):
        async def _test():
            bridge = HostBridge()

            async def broken(data):
                raise RuntimeError("handler failed")

            await bridge.register({HostBridge.RECEIVE_OFFER: broken})

            assert not await bridge.invoke(HostBridge.RECEIVE_OFFER, {})
            assert bridge.handler_errors == 1

        run_async(_test())

    def test_unknown_entry_point(self):
        async def _test():
            bridge = HostBridge()
            assert not await bridge.invoke("receive_answer", {})
            with pytest.raises(ValueError):
                await bridge.register({"receive_answer": lambda data: None})

        run_async(_test())

    def test_receive_text_routes_by_type(self):
        async def _test():
            bridge = HostBridge()
            await bridge.register(self.handlers())

            assert await bridge.receive_text(json.dumps({"type": "offer", "data": {"sdp": "v=0"}}))
            assert await bridge.receive_text(json.dumps({"type": "iceCandidate", "data": ice_payload(50001)}))

            assert self.calls == [
                ("offer", Offer(sdp="v=0")),
                ("ice", IceCandidate(candidate=candidate_line(50001), sdp_mid="0", sdp_mline_index=0)),
            ]

        run_async(_test())

    def test_receive_text_rejects_bad_input(self):
        async def _test():
            bridge = HostBridge()
            await bridge.register(self.handlers())

            assert not await bridge.receive_text("{not json")
            assert not await bridge.receive_text(json.dumps([1, 2]))
            assert not await bridge.receive_text(json.dumps({"type": "answer"}))
            assert not await bridge.receive_text(json.dumps({"type": "ready"}))
            assert not await bridge.receive_text(json.dumps({"type": "iceCandidate", "data": {"candidate": {}}}))
            assert self.calls == []

        run_async(_test())
