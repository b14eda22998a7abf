from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable


class Phase(StrEnum):
    DISCOVERING = "discovering"
    CRAWLING = "crawling"
    RENDERING = "rendering"
    MARKDOWN = "markdown"
    OFFSITE = "offsite"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"


PHASE_RATIOS: dict[Phase, float] = {
    Phase.DISCOVERING: 0.05,
    Phase.CRAWLING: 0.20,
    Phase.RENDERING: 0.45,
    Phase.MARKDOWN: 0.56,
    Phase.OFFSITE: 0.65,
    Phase.SYNTHESIZING: 0.85,
    Phase.COMPLETED: 1.0,
}


@dataclass(slots=True)
class ProgressEvent:
    phase: Phase
    ratio: float
    message: str
    elapsed_ms: int | None = None
    cost: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "phase": self.phase.value,
            "ratio": self.ratio,
            "message": self.message,
        }
        if self.elapsed_ms is not None:
            data["elapsedMs"] = self.elapsed_ms
        if self.cost is not None:
            data["cost"] = self.cost
        return data


ProgressCallback = Callable[[ProgressEvent], Any]
