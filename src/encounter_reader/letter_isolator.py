"""Isolate name letters from a resized viewport before OCR.

Pipeline:
1. Classify every pixel as background (opaque near-white) or ink
2. Label 8-connected ink components and keep the ones crossing the
   horizontal midline
3. Midline components that exceed the letter size ceiling or touch the
   image border are noise (clouds, gradients, UI panels), the rest are
   letters
4. Composite letters as black on white. Ink never reached from the
   midline is dropped as speckle.
"""

from __future__ import annotations

from enum import IntEnum

import cv2
import numpy as np

from encounter_reader.config import RecognitionConfig


# ---------------------------------------------------------------------------
# Cell states
# ---------------------------------------------------------------------------

class CellState(IntEnum):
    BACKGROUND = 0
    INK = 1
    LETTER = 2
    NOISE = 3


_WHITE = 255


# ---------------------------------------------------------------------------
# Whiteness classification
# ---------------------------------------------------------------------------

def is_background_pixel(pixel: tuple[int, int, int, int], tolerance: int) -> bool:
    """Return True if an (r, g, b, a) pixel is opaque and near-white.

    Translucent pixels are never background, so faded letter edges
    survive as ink.
    """
    r, g, b, a = pixel
    if a != _WHITE:
        return False
    return (
        _WHITE - r <= tolerance
        and _WHITE - g <= tolerance
        and _WHITE - b <= tolerance
    )


def background_mask(rgba: np.ndarray, tolerance: int) -> np.ndarray:
    """Vectorized is_background_pixel over an H x W x 4 uint8 image."""
    if rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError(f"expected an H x W x 4 RGBA array, got shape {rgba.shape}")
    floor = _WHITE - tolerance
    opaque = rgba[:, :, 3] == _WHITE
    near_white = np.all(rgba[:, :, :3].astype(np.int16) >= floor, axis=2)
    return opaque & near_white


def ink_mask(rgba: np.ndarray, tolerance: int, light_text: bool = False) -> np.ndarray:
    """Candidate ink pixels for the given text polarity."""
    background = background_mask(rgba, tolerance)
    if light_text:
        return background
    return ~background


# ---------------------------------------------------------------------------
# Cluster segmentation
# ---------------------------------------------------------------------------

def segment_letters(ink: np.ndarray, max_letter_pixels: int) -> np.ndarray:
    """Classify ink components crossing the midline as LETTER or NOISE.

    A midline component is NOISE if it has more than ``max_letter_pixels``
    pixels or its bounding box touches the image border; otherwise LETTER.
    Returns an H x W uint8 array of CellState values. Ink that no midline
    seed reaches stays INK.
    """
    if ink.ndim != 2:
        raise ValueError(f"expected a 2-D ink mask, got shape {ink.shape}")
    states = np.where(ink, CellState.INK, CellState.BACKGROUND).astype(np.uint8)
    h, w = states.shape
    if h == 0 or w == 0:
        return states

    num_labels, labels, stats, _ = cv2.connectedComponentsWithStats(
        ink.astype(np.uint8), connectivity=8,
    )
    if num_labels <= 1:
        return states

    seeds = np.unique(labels[h // 2])
    seeds = seeds[seeds != 0]
    if len(seeds) == 0:
        return states

    left = stats[seeds, cv2.CC_STAT_LEFT]
    top = stats[seeds, cv2.CC_STAT_TOP]
    right = left + stats[seeds, cv2.CC_STAT_WIDTH]
    bottom = top + stats[seeds, cv2.CC_STAT_HEIGHT]
    # Letters never reach the crop edge; a shape that does was cut off.
    touches_border = (left == 0) | (top == 0) | (right == w) | (bottom == h)
    oversized = stats[seeds, cv2.CC_STAT_AREA] > max_letter_pixels

    noise_labels = seeds[touches_border | oversized]
    letter_labels = seeds[~(touches_border | oversized)]
    states[np.isin(labels, letter_labels)] = CellState.LETTER
    states[np.isin(labels, noise_labels)] = CellState.NOISE
    return states


# ---------------------------------------------------------------------------
# Compositing
# ---------------------------------------------------------------------------

def composite_mask(states: np.ndarray, out: np.ndarray | None = None) -> np.ndarray:
    """Render LETTER cells black and everything else white.

    Writes into ``out`` (H x W x 3 uint8) when given, else allocates.
    """
    h, w = states.shape
    if out is None:
        out = np.empty((h, w, 3), dtype=np.uint8)
    elif out.shape != (h, w, 3):
        raise ValueError(
            f"output shape {out.shape} does not match mask shape {(h, w)}"
        )
    out[...] = _WHITE
    out[states == CellState.LETTER] = 0
    return out


def isolate_letters(rgba: np.ndarray, cfg: RecognitionConfig) -> np.ndarray:
    """Classify, segment and composite one RGBA image."""
    ink = ink_mask(rgba, cfg.max_subpixel_distance, cfg.light_text)
    states = segment_letters(ink, cfg.max_letter_pixels)
    return composite_mask(states)
