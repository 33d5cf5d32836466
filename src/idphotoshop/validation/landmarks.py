from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from idphotoshop.core.buffer import PixelBuffer


@dataclass(frozen=True)
class LandmarkPx:
    x: float
    y: float


def detect_face_landmarks(buffer: PixelBuffer) -> Tuple[LandmarkPx, LandmarkPx, LandmarkPx]:
    """
    Detect face mesh landmarks and return (nose_tip, forehead_top, chin) pixel coords.

    Uses MediaPipe FaceMesh landmark indices:
      - nose tip: 1
      - forehead/top: 10  (approx top of forehead)
      - chin: 152
    """
    import mediapipe as mp

    # Transparent regions would read as black; the mesh only needs the face
    rgb = np.ascontiguousarray(buffer.rgb)

    with mp.solutions.face_mesh.FaceMesh(
        static_image_mode=True,
        refine_landmarks=True,
        max_num_faces=1,
        min_detection_confidence=0.5,
    ) as face_mesh:
        results = face_mesh.process(rgb)

    if not results.multi_face_landmarks:
        raise RuntimeError("No face detected. Try a clearer, front-facing photo with good lighting.")

    h, w = rgb.shape[:2]
    lm = results.multi_face_landmarks[0].landmark

    def to_px(i: int) -> LandmarkPx:
        return LandmarkPx(x=lm[i].x * w, y=lm[i].y * h)

    nose_tip, forehead, chin = to_px(1), to_px(10), to_px(152)
    if chin.y <= forehead.y:
        raise RuntimeError("Face landmarks looked inconsistent. Try a different image.")
    return nose_tip, forehead, chin
