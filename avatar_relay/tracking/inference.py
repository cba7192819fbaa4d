"""
Face Tracker Adapter

Wraps the MediaPipe face landmarker behind a small detector interface:
video frame + timestamp -> blendshape categories and transformation
matrices. The pipeline only depends on FaceDetector, so tests and
alternative trackers can substitute their own implementation.
"""

import os
from dataclasses import dataclass
from typing import Any, List, Optional

import aiohttp
import numpy as np

from avatar_relay.errors import InferenceUnavailableError
from avatar_relay.tracking.blend_shapes import BlendshapeScore

DEFAULT_MODEL_ASSET_PATH = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task"
)

MODEL_DOWNLOAD_TIMEOUT = 60.0  # seconds


@dataclass
class InferenceResult:
    """Output of one detector invocation for the first detected face."""
    blendshapes: Optional[List[BlendshapeScore]] = None
    transforms: Optional[List[Any]] = None

    @property
    def has_face(self) -> bool:
        """True if the tracker reported either blendshapes or a transform."""
        return bool(self.blendshapes) or bool(self.transforms)


class FaceDetector:
    """Interface for face trackers consumed by the retargeting pipeline."""

    @property
    def is_ready(self) -> bool:
        return False

    async def initialize(self):
        """Load models. Raises on failure."""
        raise NotImplementedError

    def detect(self, frame: Any, timestamp_ms: int) -> Optional[InferenceResult]:
        """Run detection on a single RGB frame."""
        raise NotImplementedError

    def close(self):
        pass


class MediaPipeFaceDetector(FaceDetector):
    """Face tracker backed by the MediaPipe Tasks FaceLandmarker in VIDEO mode."""

    def __init__(self, model_asset_path: str = DEFAULT_MODEL_ASSET_PATH, num_faces: int = 1, logger=None):
        self.model_asset_path = model_asset_path
        self.num_faces = num_faces
        self.logger = logger
        self._mp = None
        self._landmarker = None

    @property
    def is_ready(self) -> bool:
        return self._landmarker is not None

    async def _load_model_buffer(self) -> Optional[bytes]:
        """Fetch the model when it is given as a URL. Returns None for local paths."""
        if not self.model_asset_path.startswith(("http://", "https://")):
            if not os.path.exists(self.model_asset_path):
                raise FileNotFoundError(f"Face landmarker model not found: {self.model_asset_path}")
            return None

        if self.logger:
            self.logger.info(f"Downloading face landmarker model from {self.model_asset_path}")

        timeout = aiohttp.ClientTimeout(total=MODEL_DOWNLOAD_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.model_asset_path) as response:
                response.raise_for_status()
                return await response.read()

    async def initialize(self):
        """Create the landmarker. Any failure propagates to the caller."""
        if self._landmarker is not None:
            return

        import mediapipe as mp

        model_buffer = await self._load_model_buffer()
        if model_buffer is not None:
            base_options = mp.tasks.BaseOptions(model_asset_buffer=model_buffer)
        else:
            base_options = mp.tasks.BaseOptions(model_asset_path=self.model_asset_path)

        options = mp.tasks.vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.VIDEO,
            num_faces=self.num_faces,
            output_face_blendshapes=True,
            output_facial_transformation_matrixes=True,
        )
        self._mp = mp
        self._landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)

        if self.logger:
            self.logger.info("MediaPipe face landmarker initialized")

    def detect(self, frame: Any, timestamp_ms: int) -> Optional[InferenceResult]:
        if self._landmarker is None:
            raise InferenceUnavailableError("Face landmarker is not initialized")

        image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=np.ascontiguousarray(frame))
        result = self._landmarker.detect_for_video(image, int(timestamp_ms))

        blendshapes = None
        if getattr(result, "face_blendshapes", None):
            blendshapes = [
                BlendshapeScore(name=category.category_name, score=float(category.score))
                for category in result.face_blendshapes[0]
            ]

        transforms = None
        if getattr(result, "facial_transformation_matrixes", None):
            transforms = [np.asarray(matrix) for matrix in result.facial_transformation_matrixes]

        return InferenceResult(blendshapes=blendshapes, transforms=transforms)

    def close(self):
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
