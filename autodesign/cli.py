from __future__ import annotations

import argparse
import json
import logging
import signal
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .agent import AutonomousDesignAgent
from .config import Settings
from .llm.services import GeminiCollaborators
from .nodes import archive
from .state import AgentState, Decision, IterationAnalysis, RoomAnalysis, RunConfig

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Autonomous interior-design improvement loop")
    parser.add_argument("--image", type=str, required=True, help="Starting room image (jpg/png)")
    parser.add_argument("--goal", type=str, required=True, help="Design goal, e.g. 'cozy scandinavian living room'")
    parser.add_argument("--style", action="append", default=None, help="Style keyword (repeatable)")
    parser.add_argument("--max-iterations", type=int, default=10, help="Iteration cap")
    parser.add_argument("--delay-ms", type=int, default=1000, help="Pause between iterations")
    parser.add_argument("--max-cost", type=float, default=0.4, help="Budget for paid image edits (USD)")
    parser.add_argument("--test-mode", action="store_true", help="Simulate edits; no cost, no spatial checks")
    parser.add_argument("--room", type=str, default="", help="Room constraints JSON (room_type, constraints, traffic_flow)")
    parser.add_argument("--outdir", type=str, default="", help="Output directory (optional)")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def _default_outdir() -> str:
    return f"artifacts/run_{datetime.now().strftime('%Y%m%d_%H%M%S')}"


def _load_room(path: str) -> Optional[RoomAnalysis]:
    if not path:
        return None
    room_path = Path(path)
    if not room_path.exists():
        raise SystemExit(f"Room file not found: {room_path}")
    try:
        data = json.loads(room_path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise SystemExit(f"Room file is not valid JSON: {e}") from None
    if not isinstance(data, dict):
        raise SystemExit("Room file must contain a JSON object")
    return RoomAnalysis.from_dict(data)


def _print_decision(decision: Decision) -> None:
    print(f"[{decision.iteration}] {decision.action} {decision.target} ({decision.confidence:.2f}): {decision.reason}")


def _print_analysis(analysis: IterationAnalysis) -> None:
    verdict = "rejected" if analysis.rejected else ("ok" if analysis.success else "failed")
    print(
        f"    -> {verdict} quality={analysis.quality_score:.2f} style={analysis.style_score:.2f}"
        + (f" | {analysis.lesson_learned}" if analysis.lesson_learned else "")
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    image = Path(args.image)
    if not image.exists():
        raise SystemExit(f"Image not found: {image}")
    try:
        config = RunConfig(
            design_goal=args.goal,
            test_mode=bool(args.test_mode),
            max_iterations=int(args.max_iterations),
            iteration_delay_ms=int(args.delay_ms),
            max_cost=float(args.max_cost),
            style_keywords=tuple(args.style or ()),
        )
    except ValueError as e:
        raise SystemExit(str(e)) from None
    room = _load_room(args.room)

    outdir = Path(args.outdir or _default_outdir())
    outdir.mkdir(parents=True, exist_ok=True)
    settings = Settings.from_env()
    if not settings.api_key:
        LOGGER.warning("No GEMINI_API_KEY found; using offline placeholders")
    agent = AutonomousDesignAgent(config, GeminiCollaborators(outdir, settings=settings))

    # Ctrl+C stops cooperatively after the current phase
    previous = signal.signal(signal.SIGINT, lambda *_: agent.stop())
    try:
        final: AgentState = agent.run(
            str(image),
            room=room,
            on_decision=_print_decision,
            on_analysis=_print_analysis,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    archive.run(final, config, outdir)
    progress = final.overall_progress
    print(
        f"Run {final.status}: {len(final.analyses)} analyses, cost ${final.total_cost:.2f}, "
        f"avg quality {progress.avg_quality:.2f}, avg style {progress.avg_style_score:.2f}, "
        f"success rate {progress.success_rate:.0%}"
    )
    for err in final.errors:
        print(f"  error: {err}")
    print(f"Artifacts saved under: {outdir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
