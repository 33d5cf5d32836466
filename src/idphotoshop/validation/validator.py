from __future__ import annotations

import importlib.util
import logging
from typing import Any, List, Optional, Tuple

import numpy as np

from idphotoshop.core.buffer import ImageSource, PixelBuffer, as_buffer
from idphotoshop.core.models import Background, DocumentRequirements
from idphotoshop.validation.landmarks import detect_face_landmarks
from idphotoshop.validation.report import RuleResult, ValidationReport

logger = logging.getLogger(__name__)

DEFAULT_HEAD_RANGE = (0.50, 0.69)
BORDER_RATIO_TARGET = 0.95

# Landmark detection needs mediapipe; without it the landmark rules just fail.
_detect_face_landmarks = detect_face_landmarks if importlib.util.find_spec("mediapipe") else None


def _border_pixels(samples: np.ndarray, margin: int) -> np.ndarray:
    h, w, c = samples.shape
    m = max(1, min(margin, h // 2, w // 2))
    parts = [samples[:m, :, :], samples[h - m:, :, :], samples[:, :m, :], samples[:, w - m:, :]]
    return np.concatenate([p.reshape(-1, c) for p in parts], axis=0)


def _luma(rgb: np.ndarray) -> np.ndarray:
    rgb = rgb.astype(np.float32)
    return 0.2126 * rgb[..., 0] + 0.7152 * rgb[..., 1] + 0.0722 * rgb[..., 2]


def _lighting_metrics(buffer: PixelBuffer) -> dict[str, Any]:
    # Fully transparent pixels (removed background) say nothing about lighting
    visible = buffer.alpha > 0
    gray = _luma(buffer.rgb)[visible] if visible.any() else _luma(buffer.rgb).ravel()
    return {
        "luma_mean": float(gray.mean()),
        "luma_std": float(gray.std()),
        "dark_clip": float((gray <= 10).mean()),
        "bright_clip": float((gray >= 245).mean()),
    }


def _get_landmarks(buffer: PixelBuffer) -> Optional[Tuple[Any, Any, Any]]:
    """Return (nose_tip, forehead_top, chin) if possible."""
    if _detect_face_landmarks is None:
        return None
    try:
        return _detect_face_landmarks(buffer)
    except Exception as exc:
        logger.info("Face landmarks unavailable: %s", exc)
        return None


def _head_range(requirements: DocumentRequirements) -> Tuple[float, float]:
    if requirements.head.height_percent is None:
        return DEFAULT_HEAD_RANGE
    lo, hi = requirements.head.height_percent
    return lo / 100.0, hi / 100.0


def _background_rule(buffer: PixelBuffer, requirements: DocumentRequirements) -> RuleResult:
    margin = max(10, int(0.05 * min(buffer.width, buffer.height)))
    border = _border_pixels(buffer.samples, margin)
    kind = requirements.background

    if kind is Background.WHITE:
        thr = 245
        ratio = float(np.all(border >= thr, axis=1).mean())
        ok = ratio >= BORDER_RATIO_TARGET
        msg = f"Near-white border pixels: {ratio*100:.1f}% (target ≥ {BORDER_RATIO_TARGET*100:.0f}%)."
        if not ok:
            msg += " Background may not be white enough."
        return RuleResult("Background", ok, msg, {"white_ratio": ratio, "margin_px": margin, "threshold": thr})

    if kind is Background.TRANSPARENT:
        ratio = float((border[:, 3] <= 10).mean())
        ok = ratio >= BORDER_RATIO_TARGET
        msg = f"Transparent border pixels: {ratio*100:.1f}% (target ≥ {BORDER_RATIO_TARGET*100:.0f}%)."
        if not ok:
            msg += " Background was not removed cleanly."
        return RuleResult("Background", ok, msg, {"transparent_ratio": ratio, "margin_px": margin})

    std = float(_luma(border[:, :3]).std())
    ok = std <= 12.0
    msg = f"Border luma std {std:.1f} (target ≤ 12)."
    if not ok:
        msg += " Background should be a single flat colour."
    return RuleResult("Background", ok, msg, {"border_luma_std": std, "margin_px": margin})


def validate_document_photo(image: ImageSource, requirements: DocumentRequirements) -> ValidationReport:
    """
    Check a composed photo against the document's requirements.

    Rules are best-effort heuristics intended for user guidance, not an
    official acceptance decision.
    """
    buffer = as_buffer(image)
    results: List[RuleResult] = []

    # Rule: Size
    w, h = buffer.size
    exp_w, exp_h = requirements.output_size
    results.append(
        RuleResult(
            rule_id="Size",
            passed=(w, h) == (exp_w, exp_h),
            message=f"{w}x{h} pixels (expected {exp_w}x{exp_h}).",
            metrics={"width": w, "height": h, "expected": [exp_w, exp_h]},
        )
    )

    nose = forehead = chin = None
    lm = _get_landmarks(buffer)
    if lm is not None:
        nose, forehead, chin = lm

    # Rule: Head ratio
    lo, hi = _head_range(requirements)
    if forehead is None or chin is None:
        results.append(
            RuleResult(
                rule_id="Head ratio",
                passed=False,
                message="Could not detect face landmarks (needed for head size check).",
                metrics={"head_ratio": None, "range": [lo, hi]},
            )
        )
    else:
        head_px = max(0.0, float(chin.y - forehead.y))
        ratio = head_px / float(h)
        ok = lo <= ratio <= hi
        msg = f"{ratio:.2f} of image height (target {lo:.2f}–{hi:.2f})."
        if not ok:
            msg += " Move the frame or re-take with the head sized appropriately."
        results.append(
            RuleResult("Head ratio", ok, msg, {"head_ratio": ratio, "head_px": head_px, "range": [lo, hi]})
        )

    # Rule: Centering (nose x near image center)
    center_x = w / 2.0
    if nose is None:
        results.append(
            RuleResult(
                rule_id="Centering",
                passed=False,
                message="Could not detect face landmarks (needed for centering check).",
                metrics={"nose_x": None, "center_x": center_x},
            )
        )
    else:
        dx = float(nose.x - center_x)
        tol = 0.08 * w
        ok = abs(dx) <= tol
        msg = f"Nose offset {dx:+.0f}px (tolerance ±{tol:.0f}px)."
        if not ok:
            msg += " Re-center the frame on the face."
        results.append(
            RuleResult(
                "Centering", ok, msg, {"nose_x": nose.x, "center_x": center_x, "dx_px": dx, "tolerance_px": tol}
            )
        )

    results.append(_background_rule(buffer, requirements))

    # Rule: Lighting
    lmets = _lighting_metrics(buffer)
    ok_mean = 60.0 <= lmets["luma_mean"] <= 210.0
    ok_clip = lmets["dark_clip"] <= 0.02 and lmets["bright_clip"] <= 0.02
    ok_std = 15.0 <= lmets["luma_std"] <= 90.0
    light_ok = ok_mean and ok_clip and ok_std
    light_msg = (
        f"Mean {lmets['luma_mean']:.0f}, Std {lmets['luma_std']:.0f}, "
        f"Clip(D/B) {lmets['dark_clip']*100:.1f}%/{lmets['bright_clip']*100:.1f}%."
    )
    if not light_ok:
        light_msg += " Adjust brightness/exposure or re-take with even front lighting."
    results.append(RuleResult("Lighting", light_ok, light_msg, lmets))

    return ValidationReport(passed=all(r.passed for r in results), results=results)


def format_report_text(report: ValidationReport) -> str:
    lines: List[str] = ["IDPhotoShop Validation Report", "-" * 29, f"Overall: {'PASS' if report.passed else 'FAIL'}", ""]
    for r in report.results:
        mark = "✅" if r.passed else "❌"
        lines.append(f"{mark} {r.rule_id}: {r.message}")
    return "\n".join(lines)
