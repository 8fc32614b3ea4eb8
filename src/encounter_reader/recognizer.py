"""Batch recognition: viewports in, resolved creature names out.

One tracking tick hands over every captured viewport at once:

- Each viewport is preprocessed on a worker thread (resize, segment,
  composite). Workers share nothing, so no locking is needed.
- The batch waits for all workers. Each task has its own timeout, counted
  from when it starts running. A task that fails or times out contributes
  no reading; its siblings are unaffected.
- Cleaned images are fed to the OCR engine one at a time, in input order.
- Transcripts at or below the noise floor are dropped, the rest are
  snapped to the closest vocabulary name.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

from PIL import Image

from encounter_reader.config import RecognitionConfig, validate_vocabulary
from encounter_reader.name_matcher import resolve_name
from encounter_reader.ocr_engine import OcrEngine, create_ocr_engine
from encounter_reader.viewport_preprocessor import preprocess_viewport

if TYPE_CHECKING:
    from encounter_reader.debug_service import DebugService

logger = logging.getLogger(__name__)

# How often the fan-in wait wakes up to check for cancellation.
_CANCEL_POLL_S = 0.05


def _close_result(future: Future) -> None:
    """Done-callback for abandoned tasks: drop the image they produced."""
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()


class NameRecognizer:
    """Turns a batch of captured viewports into a list of known names.

    The configuration and vocabulary are validated once here and trusted
    afterwards. The OCR engine is owned by the recognizer and only ever
    called from the thread running ``recognize``.
    """

    def __init__(
        self,
        cfg: RecognitionConfig,
        vocabulary: Sequence[str],
        engine: OcrEngine | None = None,
        debug: DebugService | None = None,
    ) -> None:
        cfg.validate()
        self._cfg = cfg
        self._vocabulary = validate_vocabulary(vocabulary)
        self._engine = engine if engine is not None else create_ocr_engine("tesseract", cfg)
        self._debug = debug
        self._executor = ThreadPoolExecutor(
            max_workers=cfg.preprocess_workers,
            thread_name_prefix="viewport",
        )
        # Abandoned tasks still holding a worker thread.
        self._stuck = 0
        self._stuck_lock = threading.Lock()

    @property
    def vocabulary(self) -> tuple[str, ...]:
        return self._vocabulary

    def recognize(
        self,
        viewports: Sequence[Image.Image],
        cancel_event: threading.Event | None = None,
    ) -> list[str]:
        """Read every viewport and return the names found.

        Takes ownership of the viewport images. Returns an empty list when
        nothing usable was read or when ``cancel_event`` was set.
        """
        if not viewports:
            return []

        started: list[float | None] = [None] * len(viewports)
        futures = [
            self._executor.submit(self._run_task, started, index, viewport, cancel_event)
            for index, viewport in enumerate(viewports)
        ]
        cleaned = self._gather(futures, viewports, started, cancel_event)
        if cleaned is None:
            logger.info("Recognition cycle cancelled during preprocessing")
            return []

        names: list[str] = []
        for index, image in enumerate(cleaned):
            if image is None:
                continue
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Recognition cycle cancelled during OCR")
                for rest in cleaned[index:]:
                    if rest is not None:
                        rest.close()
                return []
            name = self._read_one(index, image)
            if name is not None:
                names.append(name)

        logger.debug("Cycle done: %d viewports, %d names", len(viewports), len(names))
        return names

    def _run_task(
        self,
        started: list[float | None],
        index: int,
        viewport: Image.Image,
        cancel_event: threading.Event | None,
    ) -> Image.Image:
        started[index] = time.monotonic()
        return preprocess_viewport(viewport, self._cfg, cancel_event)

    def _gather(
        self,
        futures: list[Future],
        viewports: Sequence[Image.Image],
        started: list[float | None],
        cancel_event: threading.Event | None,
    ) -> list[Image.Image | None] | None:
        """Wait for all preprocessing tasks. Returns None if cancelled.

        Each task gets ``preprocess_timeout_s`` from the moment a worker
        picks it up. Queued tasks give up only when every worker is held by
        a task that already timed out and none frees up within one more
        timeout.
        """
        timeout = self._cfg.preprocess_timeout_s
        pending = set(futures)
        timed_out: set[Future] = set()
        stalled_since: float | None = None

        while pending:
            if cancel_event is not None and cancel_event.is_set():
                for index, future in enumerate(futures):
                    if future not in timed_out:
                        self._abandon(future, viewports[index])
                return None

            now = time.monotonic()
            for index, future in enumerate(futures):
                if future not in pending or future.done() or started[index] is None:
                    continue
                if now - started[index] >= timeout:
                    logger.warning(
                        "Viewport %d: preprocessing timed out after %.1fs",
                        index, timeout,
                    )
                    pending.discard(future)
                    timed_out.add(future)
                    self._abandon(future, viewports[index])

            queued = [i for i, f in enumerate(futures) if f in pending and started[i] is None]
            with self._stuck_lock:
                blocked = self._stuck >= self._cfg.preprocess_workers
            if pending and blocked and len(queued) == len(pending):
                if stalled_since is None:
                    stalled_since = now
                elif now - stalled_since >= timeout:
                    for index in queued:
                        logger.warning(
                            "Viewport %d: no free worker after %.1fs", index, timeout,
                        )
                        pending.discard(futures[index])
                        timed_out.add(futures[index])
                        self._abandon(futures[index], viewports[index])
            else:
                stalled_since = None

            if pending:
                _, pending = wait(pending, timeout=_CANCEL_POLL_S)

        results: list[Image.Image | None] = []
        for index, future in enumerate(futures):
            if future in timed_out:
                results.append(None)
                continue
            error = future.exception()
            if error is not None:
                logger.error(
                    "Viewport %d: preprocessing failed: %s", index, error,
                    exc_info=error,
                )
                results.append(None)
                continue
            results.append(future.result())
        return results

    def _abandon(self, future: Future, viewport: Image.Image) -> None:
        """Give up on a task. Whatever image it still owns gets closed."""
        if future.cancel():
            viewport.close()
            return
        with self._stuck_lock:
            self._stuck += 1
        future.add_done_callback(self._release_worker)
        future.add_done_callback(_close_result)

    def _release_worker(self, future: Future) -> None:
        with self._stuck_lock:
            self._stuck -= 1

    def _read_one(self, index: int, image: Image.Image) -> str | None:
        """OCR one cleaned image and resolve it. Closes the image."""
        try:
            if self._debug:
                self._debug.save_cleaned(index, image)
            text = self._engine.read(image)
        except Exception as e:
            logger.warning("Viewport %d: OCR failed: %s", index, e)
            return None
        finally:
            image.close()

        if self._debug:
            self._debug.log("OCR RAW", f"{index}: {text!r}")
        # The floor applies to the raw transcript, trailing newline included.
        if len(text) <= self._cfg.min_transcript_length:
            logger.debug("Viewport %d: dropped noise transcript %r", index, text)
            return None

        text = text.strip()
        name = resolve_name(text, self._vocabulary)
        logger.debug("Viewport %d: %r -> %s", index, text, name)
        return name

    def close(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> NameRecognizer:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
