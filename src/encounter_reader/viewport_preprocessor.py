"""Resize one captured viewport and clean it for OCR."""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import CancelledError

import cv2
import numpy as np
from PIL import Image

from encounter_reader.config import RecognitionConfig
from encounter_reader.letter_isolator import isolate_letters

logger = logging.getLogger(__name__)


def target_size(width: int, height: int, min_width: int) -> tuple[int, int]:
    """Scale (width, height) to ``min_width`` wide, preserving aspect ratio.

    The height is rounded up: 101x50 at width 300 gives 300x149.
    """
    if width <= 0 or height <= 0 or min_width <= 0:
        raise ValueError(
            f"cannot resize {width}x{height} to width {min_width}"
        )
    return min_width, math.ceil(min_width / width * height)


def resample(rgba: np.ndarray, size: tuple[int, int]) -> np.ndarray:
    """Bicubic resample with mirrored edge tiling.

    Mirroring the source past its edges keeps the interpolation kernel
    from pulling in black at the crop boundary, which would otherwise
    show up as a dark fringe and be read as ink.
    """
    src_h, src_w = rgba.shape[:2]
    dst_w, dst_h = size
    sx = dst_w / src_w
    sy = dst_h / src_h
    # Map pixel centres onto pixel centres.
    matrix = np.array(
        [[sx, 0.0, 0.5 * sx - 0.5],
         [0.0, sy, 0.5 * sy - 0.5]],
        dtype=np.float64,
    )
    return cv2.warpAffine(
        rgba, matrix, (dst_w, dst_h),
        flags=cv2.INTER_CUBIC,
        borderMode=cv2.BORDER_REFLECT,
    )


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CancelledError()


def preprocess_viewport(
    image: Image.Image,
    cfg: RecognitionConfig,
    cancel_event: threading.Event | None = None,
) -> Image.Image:
    """Resize ``image`` and reduce it to black letters on white.

    Takes ownership of ``image``: it is closed once resampling is done,
    or as soon as the call fails or is cancelled.
    Returns a new RGB image of width ``cfg.min_resize_width``.
    """
    try:
        _check_cancelled(cancel_event)
        size = target_size(image.width, image.height, cfg.min_resize_width)
        rgba = np.array(image.convert("RGBA"), dtype=np.uint8)
        resized = resample(rgba, size)
    finally:
        image.close()
    del rgba

    _check_cancelled(cancel_event)
    cleaned = isolate_letters(resized, cfg)

    _check_cancelled(cancel_event)
    logger.debug(
        "Viewport cleaned: %dx%d, ink=%d px",
        size[0], size[1], int(np.count_nonzero(cleaned[:, :, 0] == 0)),
    )
    return Image.fromarray(cleaned)
