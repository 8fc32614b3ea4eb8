from __future__ import annotations

from dataclasses import dataclass, field
from PyQt6.QtCore import QSettings

_ORGANIZATION = "EncounterReader"
_APPLICATION = "EncounterReader"


@dataclass
class Viewport:
    name: str
    region: tuple[int, int, int, int]  # (left, top, width, height)


@dataclass
class TrackerSettings:
    viewports: list[Viewport] = field(default_factory=list)
    interval_ms: int = 1000
    config_path: str = "config.json"
    vocabulary_path: str = "species.json"

    def regions(self) -> list[tuple[int, int, int, int]]:
        return [v.region for v in self.viewports]

    def save(self, s: QSettings | None = None) -> None:
        if s is None:
            s = QSettings(_ORGANIZATION, _APPLICATION)
        s.setValue("interval_ms", self.interval_ms)
        s.setValue("config_path", self.config_path)
        s.setValue("vocabulary_path", self.vocabulary_path)

        s.beginWriteArray("viewports", len(self.viewports))
        for i, viewport in enumerate(self.viewports):
            s.setArrayIndex(i)
            s.setValue("name", viewport.name)
            s.setValue("region_left", viewport.region[0])
            s.setValue("region_top", viewport.region[1])
            s.setValue("region_width", viewport.region[2])
            s.setValue("region_height", viewport.region[3])
        s.endArray()
        s.sync()

    @classmethod
    def load(cls, s: QSettings | None = None) -> TrackerSettings:
        if s is None:
            s = QSettings(_ORGANIZATION, _APPLICATION)

        viewports: list[Viewport] = []
        count = s.beginReadArray("viewports")
        for i in range(count):
            s.setArrayIndex(i)
            if not s.contains("region_left"):
                continue
            viewports.append(Viewport(
                name=str(s.value("name", f"Viewport {i + 1}")),
                region=(
                    int(s.value("region_left", 0)),
                    int(s.value("region_top", 0)),
                    int(s.value("region_width", 100)),
                    int(s.value("region_height", 100)),
                ),
            ))
        s.endArray()

        return cls(
            viewports=viewports,
            interval_ms=int(s.value("interval_ms", 1000)),
            config_path=str(s.value("config_path", "config.json")),
            vocabulary_path=str(s.value("vocabulary_path", "species.json")),
        )
