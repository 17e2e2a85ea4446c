from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..state import AgentState, RunConfig


def build_report(state: AgentState, config: RunConfig) -> Dict[str, Any]:
    return {
        "metadata": {
            "designGoal": config.design_goal,
            "styleKeywords": list(config.style_keywords),
            "totalIterations": len(state.analyses),
            "totalCost": state.total_cost,
            "testMode": config.test_mode,
            "status": state.status,
            "completedAt": datetime.now(timezone.utc).isoformat(),
        },
        "overallProgress": asdict(state.overall_progress),
        "learnedPatterns": asdict(state.learned_patterns),
        "errors": list(state.errors),
        "iterationDetails": [
            {
                "iteration": a.iteration,
                "timestamp": a.timestamp.isoformat(),
                "action": f"{a.decision.action} - {a.decision.target}",
                "reason": a.decision.reason,
                "qualityScore": f"{a.quality_score * 100:.0f}%",
                "styleScore": f"{a.style_score * 100:.0f}%",
                "success": a.success,
                "rejected": a.rejected,
                "strengths": list(a.strengths),
                "weaknesses": list(a.weaknesses),
                "styleNotes": a.style_notes,
                "lessonLearned": a.lesson_learned,
            }
            for a in state.analyses
        ],
    }


def export_report(state: AgentState, config: RunConfig) -> str:
    return json.dumps(build_report(state, config), ensure_ascii=False, indent=2)


def export_images(state: AgentState) -> List[Tuple[int, str]]:
    return [(a.iteration, a.image_ref) for a in state.analyses if a.image_ref]


def run(state: AgentState, config: RunConfig, outdir: str | Path) -> Path:
    out = Path(outdir)
    out.mkdir(parents=True, exist_ok=True)

    (out / "report.json").write_text(export_report(state, config), encoding="utf-8")

    # copy per-iteration images
    for iteration, ref in export_images(state):
        src = Path(ref)
        dst = out / f"iteration_{iteration}{src.suffix or '.png'}"
        if src.exists() and src.resolve() != dst.resolve():
            dst.write_bytes(src.read_bytes())

    # copy/rename final image
    if state.current_image:
        src = Path(state.current_image)
        dst = out / f"final{src.suffix or '.png'}"
        if src.exists():
            dst.write_bytes(src.read_bytes())

    return out
