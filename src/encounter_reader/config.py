"""Recognition configuration and vocabulary loading.

Both are read once at startup and validated there. The pipeline trusts the
validated values and never re-checks them per call.
"""

from __future__ import annotations

import json
import logging
import string
from dataclasses import dataclass, fields
from typing import Any

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when configuration or vocabulary cannot be used for recognition."""


# camelCase keys from older config.json files, mapped to field names.
_LEGACY_KEYS: dict[str, str] = {
    "maxOCRSubpixelFFDistance": "max_subpixel_distance",
    "minimumOCRResizeWidth": "min_resize_width",
    "maximumLetterPixelCount": "max_letter_pixels",
    "OCRCharWhitelist": "char_whitelist",
}


@dataclass(frozen=True)
class RecognitionConfig:
    """Tunable parameters for viewport cleanup, OCR and name matching.

    Default values are calibrated for creature name plates cropped from a
    1080p frame and upscaled to ``min_resize_width``.
    """

    # -- Whiteness classification --
    # Maximum distance an R, G or B channel may be from 255 for an opaque
    # pixel to count as white.
    max_subpixel_distance: int = 40
    # Ink polarity. False: dark text on a light plate (white is background).
    # True: light text, so the near-white pixels are the ink.
    light_text: bool = False

    # -- Resize --
    # Width every viewport is resampled to before segmentation.
    min_resize_width: int = 300

    # -- Cluster segmentation --
    # Maximum pixel count of a single resized letter. Larger connected
    # components are background art.
    max_letter_pixels: int = 1000

    # -- OCR --
    char_whitelist: str = string.ascii_letters
    language: str = "eng"
    # PSM 7: single text line. OEM 1: LSTM.
    tesseract_config: str = "--psm 7 --oem 1"
    ocr_timeout_s: float = 5.0

    # -- Batch --
    preprocess_workers: int = 4
    preprocess_timeout_s: float = 5.0
    # Transcripts this long or shorter are OCR noise, never a name.
    min_transcript_length: int = 3

    def validate(self) -> None:
        """Raise ConfigError if any option is unusable."""
        for name in (
            "max_subpixel_distance",
            "min_resize_width",
            "max_letter_pixels",
            "preprocess_workers",
            "min_transcript_length",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if self.max_subpixel_distance > 255:
            raise ConfigError(
                f"max_subpixel_distance must be at most 255, got {self.max_subpixel_distance}"
            )
        for name in ("ocr_timeout_s", "preprocess_timeout_s"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number, got {value!r}")
        if not self.char_whitelist:
            raise ConfigError("char_whitelist must not be empty")
        if not self.language:
            raise ConfigError("language must not be empty")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecognitionConfig:
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _LEGACY_KEYS.get(key, key)
            if name not in known:
                logger.warning("Ignoring unknown config key: %s", key)
                continue
            kwargs[name] = value
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigError(str(e)) from e


def _read_json(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"malformed JSON in {path}: {e}") from e


def load_config(path: str) -> RecognitionConfig:
    """Load and validate a RecognitionConfig from a JSON object file."""
    data = _read_json(path)
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a JSON object")
    config = RecognitionConfig.from_dict(data)
    config.validate()
    logger.info(
        "Config loaded from %s: tolerance=%d, width=%d, max_letter=%d",
        path, config.max_subpixel_distance, config.min_resize_width,
        config.max_letter_pixels,
    )
    return config


def validate_vocabulary(names: Any) -> tuple[str, ...]:
    """Return an immutable snapshot of ``names`` or raise ConfigError."""
    if isinstance(names, str) or not names:
        raise ConfigError("vocabulary must be a non-empty list of names")
    snapshot = tuple(names)
    for name in snapshot:
        if not isinstance(name, str) or not name:
            raise ConfigError(f"invalid vocabulary entry: {name!r}")
    return snapshot


def load_vocabulary(path: str) -> tuple[str, ...]:
    """Load the list of valid names.

    Accepts either a JSON list of strings or an object with a ``"species"``
    list (the species file format).
    """
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get("species")
    vocabulary = validate_vocabulary(data)
    logger.info("Vocabulary loaded from %s: %d names", path, len(vocabulary))
    return vocabulary
