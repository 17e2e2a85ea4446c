from __future__ import annotations

import copy
import logging
import uuid
from typing import Callable, List, Optional, Sequence

from .config import CONSOLIDATED_SCORE, DECAY, PATTERN_CAP
from .state import PATTERN_KINDS, LearnedPatterns, Pattern

LOGGER = logging.getLogger(__name__)

Summarizer = Callable[[Sequence[str], str], Sequence[str]]


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, float(score)))


def _new_id(kind: str) -> str:
    return f"{kind}_{uuid.uuid4().hex[:8]}"


class PatternMemory:
    """Two bounded, score-sorted collections of learned rules.

    Every mutation builds the new list off to the side and swaps it in, so a
    reader never observes more than ``cap`` entries or an unsorted list.
    """

    def __init__(
        self,
        summarizer: Optional[Summarizer] = None,
        *,
        cap: int = PATTERN_CAP,
        decay: float = DECAY,
        consolidated_score: float = CONSOLIDATED_SCORE,
    ) -> None:
        if cap < 1:
            raise ValueError("cap must be >= 1")
        if not 0.0 <= decay <= 1.0:
            raise ValueError("decay must be within [0, 1]")
        self.summarizer = summarizer
        self.cap = cap
        self.decay = decay
        self.consolidated_score = consolidated_score
        self.patterns = LearnedPatterns()
        self.consolidations = 0

    def _collection(self, kind: str) -> List[Pattern]:
        if kind not in PATTERN_KINDS:
            raise ValueError(f"Unsupported pattern kind={kind}")
        return getattr(self.patterns, kind)

    def _replace(self, kind: str, items: List[Pattern]) -> None:
        ranked = sorted(items, key=lambda p: p.score, reverse=True)
        setattr(self.patterns, kind, ranked[: self.cap])

    def observe(self, kind: str, content: str, score: float, iteration: int = 0) -> Optional[Pattern]:
        current = self._collection(kind)
        text = (content or "").strip()
        if not text:
            return None
        score = _clamp(score)

        existing = next((p for p in current if p.content == text), None)
        if existing is not None:
            updated = copy.copy(existing)
            updated.score = _clamp(existing.score * self.decay + score * (1 - self.decay))
            updated.frequency += 1
            updated.last_iteration = iteration
            self._replace(kind, [updated if p is existing else p for p in current])
            return updated

        pattern = Pattern(id=_new_id(kind), content=text, score=score, frequency=1, last_iteration=iteration)
        self._replace(kind, current + [pattern])
        return pattern

    def top_by_score(self, kind: str, min_score: float, limit: int) -> List[Pattern]:
        eligible = [p for p in self._collection(kind) if p.score > min_score]
        eligible.sort(key=lambda p: p.score, reverse=True)
        return [copy.copy(p) for p in eligible[: max(0, limit)]]

    def consolidate(self, kind: str, iteration: int = 0) -> bool:
        """Replace a collection with the summarizer's distilled rules.

        Returns True when the collection was replaced. The replacement drops
        frequency and last-seen provenance of the old entries.
        """
        current = self._collection(kind)
        if not current or self.summarizer is None:
            return False
        texts = [p.content for p in current]
        try:
            distilled = list(self.summarizer(texts, kind) or [])
        except Exception as e:
            LOGGER.warning("Consolidation of %s patterns failed: %s", kind, e)
            return False

        seen: set = set()
        fresh: List[Pattern] = []
        for rule in distilled:
            text = str(rule).strip()
            if not text or text in seen:
                continue
            seen.add(text)
            fresh.append(Pattern(
                id=_new_id(kind),
                content=text,
                score=_clamp(self.consolidated_score),
                frequency=1,
                last_iteration=iteration,
            ))
        if not fresh:
            LOGGER.warning("Consolidation of %s patterns returned no rules; keeping %d raw patterns", kind, len(current))
            return False

        self._replace(kind, fresh)
        self.consolidations += 1
        LOGGER.info("Consolidated %d %s patterns into %d rules", len(texts), kind, len(self._collection(kind)))
        return True

    def snapshot(self) -> LearnedPatterns:
        return copy.deepcopy(self.patterns)
