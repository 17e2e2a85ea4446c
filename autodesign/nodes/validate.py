from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ..config import REJECTION_SCORE
from ..llm.services import Collaborators
from ..state import Decision, DetectedObject, IterationAnalysis, RoomAnalysis, SpatialValidation

LOGGER = logging.getLogger(__name__)

# targets that always refer to the whole scene
SCENE_SENTINEL = "room"
MISSING_TARGET = "not present in the scene"


@dataclass
class ValidationOutcome:
    passed: bool
    reason: str = ""
    warnings: List[str] = field(default_factory=list)
    alternative: Optional[str] = None


def target_exists(decision: Decision, objects: Sequence[DetectedObject]) -> bool:
    """Case-insensitive exact or substring match of the target against detected names.

    EDIT is exempt: a global edit may legitimately target the whole scene.
    """
    if decision.action == "EDIT":
        return True
    target = decision.target.strip().lower()
    if target == SCENE_SENTINEL:
        return True
    if not target:
        return False
    for obj in objects:
        name = obj.name.strip().lower()
        if not name:
            continue
        if name == target or target in name or name in target:
            return True
    return False


def check_spatial(collaborators: Collaborators, decision: Decision, room: Optional[RoomAnalysis]) -> SpatialValidation:
    constraints = asdict(room) if room is not None else asdict(RoomAnalysis())
    try:
        raw = collaborators.validate_spatial(decision, constraints)
        if not isinstance(raw, dict):
            raise ValueError(f"expected a JSON object, got {type(raw).__name__}")
    except Exception as e:
        # an unavailable validator must not block every edit
        LOGGER.warning("Spatial validation unavailable for %s: %s", decision.summary(), e)
        return SpatialValidation(valid=True, warnings=[f"Spatial validation unavailable: {e}"])
    return SpatialValidation(
        valid=bool(raw.get("valid", False)),
        warnings=[str(w) for w in raw.get("warnings", []) or []],
        alternative_suggestion=raw.get("alternative_suggestion") or None,
    )


def run(
    collaborators: Collaborators,
    decision: Decision,
    objects: Sequence[DetectedObject],
    room: Optional[RoomAnalysis],
    test_mode: bool,
) -> ValidationOutcome:
    if not target_exists(decision, objects):
        return ValidationOutcome(passed=False, reason=MISSING_TARGET)
    if test_mode:
        return ValidationOutcome(passed=True)
    verdict = check_spatial(collaborators, decision, room)
    if not verdict.valid:
        reason = "; ".join(verdict.warnings) or "violates spatial constraints"
        return ValidationOutcome(
            passed=False,
            reason=reason,
            warnings=verdict.warnings,
            alternative=verdict.alternative_suggestion,
        )
    return ValidationOutcome(passed=True, warnings=verdict.warnings)


def rejection_pattern(decision: Decision, outcome: ValidationOutcome) -> str:
    return f"Avoid {decision.action} on {decision.target}: {outcome.reason}"


def rejection_analysis(decision: Decision, outcome: ValidationOutcome) -> IterationAnalysis:
    if outcome.reason == MISSING_TARGET:
        weakness = f"Target '{decision.target}' was not found among the detected objects"
        lesson = f"Only {decision.action} objects that are visible in the current image"
    else:
        weakness = f"Spatial check failed: {outcome.reason}"
        lesson = f"{decision.action} on {decision.target} breaks room constraints: {outcome.reason}"
        if outcome.alternative:
            lesson += f"; instead: {outcome.alternative}"
    return IterationAnalysis(
        iteration=decision.iteration,
        timestamp=datetime.now(timezone.utc),
        decision=decision,
        quality_score=0.0,
        style_score=0.0,
        success=False,
        weaknesses=(weakness,),
        lesson_learned=lesson,
        better_approach=outcome.alternative,
        confidence=REJECTION_SCORE,
        rejected=True,
    )
