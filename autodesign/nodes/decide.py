from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Sequence

from ..config import CONTEXT_LIMIT, CONTEXT_MIN_SCORE, RECENT_ACTIONS, UNIT_COST
from ..llm.services import Collaborators
from ..memory import PatternMemory
from ..state import ACTIONS, Decision, DetectedObject, ParseResult, RunConfig

LOGGER = logging.getLogger(__name__)


def default_decision(iteration: int, reason: str = "Error") -> Decision:
    return Decision(
        iteration=iteration,
        action="WAIT",
        target="System",
        reason=reason,
        prompt="Wait",
        confidence=0.0,
        estimated_cost=0.0,
    )


def build_context(
    config: RunConfig,
    iteration: int,
    decisions: Sequence[Decision],
    objects: Sequence[DetectedObject],
    memory: PatternMemory,
) -> Dict[str, Any]:
    return {
        "design_goal": config.design_goal,
        "style_keywords": list(config.style_keywords),
        "iteration": iteration,
        "recent_actions": [d.summary() for d in list(decisions)[-RECENT_ACTIONS:]],
        "objects": [{"name": o.name, "category": o.category} for o in objects],
        "execution_patterns": [
            asdict(p) for p in memory.top_by_score("execution", CONTEXT_MIN_SCORE, CONTEXT_LIMIT)
        ],
        "style_patterns": [
            asdict(p) for p in memory.top_by_score("style", CONTEXT_MIN_SCORE, CONTEXT_LIMIT)
        ],
    }


def parse_decision(raw: Any, iteration: int) -> ParseResult[Decision]:
    if not isinstance(raw, dict) or not raw:
        return ParseResult.failure("decision response is not a JSON object")
    action = str(raw.get("action") or "").strip().upper()
    if action not in ACTIONS:
        return ParseResult.failure(f"unknown action {raw.get('action')!r}")
    try:
        confidence = float(raw.get("confidence", 0.5))
    except (TypeError, ValueError):
        return ParseResult.failure(f"confidence is not a number: {raw.get('confidence')!r}")
    target = str(raw.get("target") or "").strip() or "Room"
    alignment = raw.get("styleAlignment")
    return ParseResult.success(Decision(
        iteration=iteration,
        action=action,  # type: ignore[arg-type]
        target=target,
        reason=str(raw.get("reason") or "Analyzing..."),
        prompt=str(raw.get("prompt") or "Wait"),
        confidence=max(0.0, min(1.0, confidence)),
        estimated_cost=0.0 if action == "WAIT" else UNIT_COST,
        style_alignment=str(alignment) if alignment else None,
    ))


def run(
    collaborators: Collaborators,
    image: str,
    config: RunConfig,
    iteration: int,
    decisions: Sequence[Decision],
    objects: Sequence[DetectedObject],
    memory: PatternMemory,
) -> Decision:
    context = build_context(config, iteration, decisions, objects, memory)
    try:
        raw = collaborators.decide(image, context)
    except Exception as e:
        LOGGER.warning("Decision call failed at iteration %d: %s", iteration, e)
        return default_decision(iteration)
    parsed = parse_decision(raw, iteration)
    if not parsed.ok:
        LOGGER.warning("Unusable decision at iteration %d: %s", iteration, parsed.error)
        return default_decision(iteration, reason=f"Unusable decision: {parsed.error}")
    return parsed.value  # type: ignore[return-value]
