"""Debug service: per-tick artifact saving and pipeline logging.

When ``ENCOUNTER_READER_DEBUG=1`` is set, DebugService creates a session
directory under ``.tests/debug/`` and records every recognition cycle.

Each tracking tick gets its own numbered folder::

    .tests/debug/session_YYYYMMDD_HHMMSS/
        pipeline.log
        001/
            raw_0.png         # captured viewport
            cleaned_0.png     # after letter isolation (what OCR sees)
            names.txt         # names resolved this tick
        002/ ...
"""

from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from datetime import datetime

from PIL import Image

_DEBUG_ROOT = os.path.join(os.path.dirname(__file__), "..", "..", ".tests", "debug")


def is_debug_enabled() -> bool:
    return os.environ.get("ENCOUNTER_READER_DEBUG", "0") == "1"


class DebugService:
    def __init__(self, root: str = _DEBUG_ROOT) -> None:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._session_dir = os.path.join(root, f"session_{ts}")
        os.makedirs(self._session_dir, exist_ok=True)

        log_path = os.path.join(self._session_dir, "pipeline.log")
        self._log_file = open(log_path, "w", encoding="utf-8")  # noqa: SIM115
        self._lock = threading.Lock()
        self._cycle_count = 0
        self._cycle_dir: str | None = None

        self.log("SESSION", f"started at {ts}")

    @property
    def session_dir(self) -> str:
        return self._session_dir

    # ------------------------------------------------------------------
    # Pipeline logging
    # ------------------------------------------------------------------

    def log(self, tag: str, text: str) -> None:
        ts = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        with self._lock:
            self._log_file.write(f"{ts}  [{tag}]  {text}\n")
            self._log_file.flush()

    # ------------------------------------------------------------------
    # Cycle artifact saving
    # ------------------------------------------------------------------

    def begin_cycle(self, viewports: Sequence[Image.Image]) -> None:
        """Open a new tick folder and save the raw captures.

        Must run before recognition, which closes the viewports.
        """
        self._cycle_count += 1
        self._cycle_dir = os.path.join(self._session_dir, f"{self._cycle_count:03d}")
        os.makedirs(self._cycle_dir, exist_ok=True)
        for index, viewport in enumerate(viewports):
            viewport.save(os.path.join(self._cycle_dir, f"raw_{index}.png"))
        self.log("CYCLE", f"{self._cycle_count:03d}: {len(viewports)} viewports")

    def save_cleaned(self, index: int, image: Image.Image) -> None:
        if self._cycle_dir is None:
            return
        image.save(os.path.join(self._cycle_dir, f"cleaned_{index}.png"))

    def end_cycle(self, names: Sequence[str]) -> None:
        if self._cycle_dir is None:
            return
        with open(os.path.join(self._cycle_dir, "names.txt"), "w", encoding="utf-8") as f:
            f.write("\n".join(names))
        self.log("NAMES", ", ".join(names) if names else "<none>")
        self._cycle_dir = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        self.log("SESSION", "ended")
        self._log_file.close()
