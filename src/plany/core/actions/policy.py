from __future__ import annotations

from dataclasses import dataclass

from .schemas import CandidateAction


@dataclass(frozen=True)
class ConfidencePolicy:
    threshold: float = 0.8

    def should_auto_execute(self, action: CandidateAction) -> bool:
        return action.confidence > self.threshold
