from __future__ import annotations

from typing import List, Tuple

from ..memory import PatternMemory
from ..state import IterationAnalysis

Observation = Tuple[str, str, float]


def execution_rule(analysis: IterationAnalysis) -> str:
    d = analysis.decision
    if analysis.success:
        return f"{d.action} on {d.target} works"
    return f"Avoid {d.action} on {d.target}"


def observations(analysis: IterationAnalysis) -> List[Observation]:
    if analysis.analysis_failed:
        return []
    obs: List[Observation] = [("execution", execution_rule(analysis), analysis.confidence)]
    lesson = analysis.lesson_learned.strip()
    if lesson:
        obs.append(("style", lesson, analysis.confidence))
    return obs


def run(memory: PatternMemory, analysis: IterationAnalysis) -> List[Observation]:
    obs = observations(analysis)
    for kind, content, score in obs:
        memory.observe(kind, content, score, iteration=analysis.iteration)
    return obs
