"""
Avatar Relay Tracking Module

Turns camera frames into FaceFrames: face tracker invocation, head
rotation decomposition and the per-frame retargeting loop.
"""

from avatar_relay.tracking.blend_shapes import FaceFrame, BlendshapeScore, Rotation, BLEND_SHAPE_NAMES
from avatar_relay.tracking.inference import FaceDetector, InferenceResult, MediaPipeFaceDetector
from avatar_relay.tracking.pipeline import RetargetingPipeline
from avatar_relay.tracking.rotation import euler_from_matrix
from avatar_relay.tracking.video import VideoSink, CameraCapture

__all__ = [
    'FaceFrame',
    'BlendshapeScore',
    'Rotation',
    'BLEND_SHAPE_NAMES',
    'FaceDetector',
    'InferenceResult',
    'MediaPipeFaceDetector',
    'RetargetingPipeline',
    'euler_from_matrix',
    'VideoSink',
    'CameraCapture',
]
