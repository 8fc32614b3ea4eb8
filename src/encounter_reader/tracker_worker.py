"""Tracker worker thread: captures viewports each tick and emits names.

The worker grabs every configured viewport region via mss, hands the batch
to NameRecognizer and emits whatever names come back. Encounter logging
and deduplication are the caller's concern.
"""

from __future__ import annotations

import logging
import threading

from mss import mss
from PIL import Image
from PyQt6.QtCore import QThread, pyqtSignal

from encounter_reader.debug_service import DebugService
from encounter_reader.recognizer import NameRecognizer

logger = logging.getLogger(__name__)


def grab_region(sct, region: tuple[int, int, int, int]) -> Image.Image:
    """Capture one screen region as an RGBA PIL image."""
    left, top, width, height = region
    screenshot = sct.grab({"left": left, "top": top, "width": width, "height": height})
    # mss returns BGRA; drop the padding byte and reorder.
    rgb = Image.frombytes("RGB", screenshot.size, screenshot.bgra, "raw", "BGRX")
    return rgb.convert("RGBA")


class TrackerWorker(QThread):
    """Background thread that runs one recognition cycle per tick.

    Signals:
    - names_recognized(list): names read this tick (may be empty)
    - error_occurred(str): capture error message for UI display
    """
    names_recognized = pyqtSignal(list)
    error_occurred = pyqtSignal(str)

    def __init__(
        self,
        recognizer: NameRecognizer,
        debug: DebugService | None = None,
    ) -> None:
        super().__init__()
        self._recognizer = recognizer
        self._debug = debug
        self._regions: list[tuple[int, int, int, int]] = []
        self._interval_ms: int = 1000
        self._running: bool = False
        self._cancel = threading.Event()
        self._tick_count: int = 0

    def configure(
        self,
        regions: list[tuple[int, int, int, int]],
        interval_ms: int,
    ) -> None:
        """Set the viewport regions and tick interval.

        Called before start() or when settings change while running.
        """
        self._regions = list(regions)
        self._interval_ms = interval_ms
        self._tick_count = 0
        logger.info(
            "Tracker configured: %d viewports, interval=%dms",
            len(self._regions), interval_ms,
        )

    def run(self) -> None:
        """Main loop: capture -> recognize -> emit."""
        self._running = True
        self._cancel.clear()

        with mss() as sct:
            while self._running:
                if not self._regions:
                    self._cancel.wait(0.1)
                    continue

                try:
                    self._process_tick(sct)
                except Exception as e:
                    logger.error("Tracker tick error: %s", e, exc_info=True)
                    self.error_occurred.emit(str(e))

                # Interruptible, so stop() never outwaits a long interval.
                self._cancel.wait(self._interval_ms / 1000)

    def _process_tick(self, sct) -> None:
        viewports = [grab_region(sct, region) for region in self._regions]
        if self._debug:
            self._debug.begin_cycle(viewports)

        names = self._recognizer.recognize(viewports, self._cancel)
        self._tick_count += 1

        if self._debug:
            self._debug.end_cycle(names)
        if self._cancel.is_set():
            return
        if names:
            logger.debug("Tick %d: %s", self._tick_count, names)
        self.names_recognized.emit(names)

    def stop(self) -> None:
        """Cancel the current cycle and wait for the thread to finish."""
        self._running = False
        self._cancel.set()
        self.wait(3000)
