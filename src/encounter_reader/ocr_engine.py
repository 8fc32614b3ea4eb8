from __future__ import annotations

import logging
import shlex
import threading
import time
from typing import Protocol

import pytesseract
from PIL import Image

from encounter_reader.config import RecognitionConfig

logger = logging.getLogger(__name__)


class OcrEngine(Protocol):
    """Protocol for OCR backends."""

    def read(self, image: Image.Image) -> str:
        """Return the text found in a cleaned black-on-white image.

        May return an empty string. Implementations are not required to be
        reentrant; callers serialize access.
        """
        ...


# ── Tesseract ──────────────────────────────────────────────────────

class TesseractEngine:
    """Tesseract via pytesseract, limited to the configured whitelist.

    One instance is shared by every recognition cycle. Calls are serialized
    with a lock and bounded by ``ocr_timeout_s``; a timed-out call raises
    RuntimeError from pytesseract.
    """

    def __init__(self, cfg: RecognitionConfig) -> None:
        self._language = cfg.language
        self._timeout = cfg.ocr_timeout_s
        self._config = (
            f"{cfg.tesseract_config} -c tessedit_char_whitelist={shlex.quote(cfg.char_whitelist)}"
        )
        self._lock = threading.Lock()

    def read(self, image: Image.Image) -> str:
        with self._lock:
            t0 = time.monotonic()
            text = pytesseract.image_to_string(
                image,
                lang=self._language,
                config=self._config,
                timeout=self._timeout,
            )
            ocr_ms = int((time.monotonic() - t0) * 1000)
        logger.debug("OCR (%dms) raw: %r", ocr_ms, text)
        return text


# ── Engine factory ─────────────────────────────────────────────────

def create_ocr_engine(name: str, cfg: RecognitionConfig) -> OcrEngine:
    """Create an OCR engine by name.

    Raises:
        ValueError: for an unknown engine name.
    """
    if name == "tesseract":
        return TesseractEngine(cfg)
    raise ValueError(f"Unknown OCR engine: {name}")
