from __future__ import annotations

import logging
import os
import signal
import sys

from PyQt6.QtCore import QCoreApplication, QTimer

from encounter_reader.config import ConfigError, load_config, load_vocabulary
from encounter_reader.debug_service import DebugService, is_debug_enabled
from encounter_reader.recognizer import NameRecognizer
from encounter_reader.settings import TrackerSettings
from encounter_reader.tracker_worker import TrackerWorker

logger = logging.getLogger(__name__)

# Exit status for configuration that cannot be used for recognition.
EXIT_CONFIG_ERROR = 2


class App:
    def __init__(self) -> None:
        self._qt_app = QCoreApplication(sys.argv)
        self._qt_app.setApplicationName("EncounterReader")
        self._qt_app.setOrganizationName("EncounterReader")

        self._settings = TrackerSettings.load()

        # Raises ConfigError before any worker starts.
        config = load_config(self._settings.config_path)
        vocabulary = load_vocabulary(self._settings.vocabulary_path)

        self._debug: DebugService | None = None
        if is_debug_enabled():
            self._debug = DebugService()
            logger.info("Debug session: %s", self._debug.session_dir)

        self._recognizer = NameRecognizer(config, vocabulary, debug=self._debug)
        self._worker = TrackerWorker(self._recognizer, debug=self._debug)
        self._worker.names_recognized.connect(self._on_names_recognized)
        self._worker.error_occurred.connect(self._on_error)

        # Wake the event loop periodically so Python can handle SIGINT.
        self._signal_timer = QTimer()
        self._signal_timer.timeout.connect(lambda: None)
        self._signal_timer.start(250)
        signal.signal(signal.SIGINT, lambda *_: self._qt_app.quit())

    def _on_names_recognized(self, names: list) -> None:
        if not names:
            logger.debug("No names recognized this cycle")
            return
        for name in names:
            logger.info("Encounter: %s", name)

    def _on_error(self, message: str) -> None:
        logger.warning("Tracker error: %s", message)

    def run(self) -> int:
        if not self._settings.viewports:
            logger.warning("No viewports configured; nothing to track")

        self._worker.configure(self._settings.regions(), self._settings.interval_ms)
        self._worker.start()
        exit_code = self._qt_app.exec()

        # Cleanup
        self._worker.stop()
        self._recognizer.close()
        self._settings.save()

        if self._debug:
            self._debug.shutdown()

        return exit_code


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("ENCOUNTER_READER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        app = App()
    except ConfigError as e:
        logger.error("Configuration error, not starting: %s", e)
        sys.exit(EXIT_CONFIG_ERROR)
    sys.exit(app.run())
