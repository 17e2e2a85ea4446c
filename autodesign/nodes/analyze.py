from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import STYLE_REGRESSION_MARGIN
from ..llm.services import Collaborators
from ..state import Decision, IterationAnalysis, ParseResult, RunConfig

LOGGER = logging.getLogger(__name__)


def decision_summary(decision: Decision, config: RunConfig) -> Dict[str, Any]:
    return {
        "action": decision.action,
        "target": decision.target,
        "reason": decision.reason,
        "prompt": decision.prompt,
        "style_goal": ", ".join(config.style_keywords) or config.design_goal,
    }


def _score(raw: Any) -> float:
    # 0-100 from the critic, normalized to [0, 1]
    return max(0.0, min(1.0, float(raw) / 100.0))


def _strings(raw: Any) -> tuple:
    if isinstance(raw, str):
        return (raw,) if raw.strip() else ()
    return tuple(str(s) for s in (raw or []) if str(s).strip())


def parse_analysis(
    raw: Any,
    decision: Decision,
    image_ref: Optional[str] = None,
) -> ParseResult[IterationAnalysis]:
    if not isinstance(raw, dict) or not raw:
        return ParseResult.failure("critique response is not a JSON object")
    try:
        quality = _score(raw.get("qualityScore", 0))
        style = _score(raw.get("styleScore", 0))
    except (TypeError, ValueError):
        return ParseResult.failure("scores are not numbers")
    success = raw.get("success") is True
    better = raw.get("betterApproach")
    return ParseResult.success(IterationAnalysis(
        iteration=decision.iteration,
        timestamp=datetime.now(timezone.utc),
        decision=decision,
        quality_score=quality,
        style_score=style,
        success=success,
        strengths=_strings(raw.get("strengths")),
        weaknesses=_strings(raw.get("weaknesses")),
        style_notes=str(raw.get("styleNotes") or ""),
        lesson_learned=str(raw.get("lessonLearned") or ""),
        better_approach=str(better) if better else None,
        image_ref=image_ref,
        confidence=quality if success else 1.0 - quality,
    ))


def failed_analysis(decision: Decision, reason: str = "Analysis failed") -> IterationAnalysis:
    return IterationAnalysis(
        iteration=decision.iteration,
        timestamp=datetime.now(timezone.utc),
        decision=decision,
        quality_score=0.0,
        style_score=0.0,
        success=False,
        weaknesses=(reason,),
        lesson_learned="",
        confidence=0.0,
        analysis_failed=True,
    )


def apply_style_penalty(
    analysis: IterationAnalysis,
    previous: List[IterationAnalysis],
    margin: float = STYLE_REGRESSION_MARGIN,
) -> IterationAnalysis:
    """Demote a "successful" edit whose style fell clearly below the running average.

    A competent edit that drifts away from the design goal must not teach
    the memory that the action works: success is flipped and the learning
    confidence halved.
    """
    if not analysis.success or not previous:
        return analysis
    avg_style = sum(a.style_score for a in previous) / len(previous)
    if analysis.style_score >= avg_style - margin:
        return analysis
    note = f"Quality acceptable but style regressed ({analysis.style_score:.2f} vs avg {avg_style:.2f})"
    LOGGER.info("Iteration %d: %s", analysis.iteration, note)
    return replace(
        analysis,
        success=False,
        confidence=analysis.quality_score * 0.5,
        weaknesses=analysis.weaknesses + (note,),
    )


def run(
    collaborators: Collaborators,
    image: str,
    decision: Decision,
    config: RunConfig,
) -> IterationAnalysis:
    image_ref = None if config.test_mode else image
    try:
        raw = collaborators.critique(image, decision_summary(decision, config))
    except Exception as e:
        LOGGER.warning("Critique failed at iteration %d: %s", decision.iteration, e)
        return failed_analysis(decision)
    parsed = parse_analysis(raw, decision, image_ref=image_ref)
    if not parsed.ok:
        LOGGER.warning("Unusable critique at iteration %d: %s", decision.iteration, parsed.error)
        return failed_analysis(decision, reason=f"Analysis failed: {parsed.error}")
    return parsed.value  # type: ignore[return-value]
