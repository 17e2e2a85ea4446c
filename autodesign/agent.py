from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Callable, List, Optional, Tuple

from .config import (
    PAUSE_POLL_S,
    REJECTION_SCORE,
    SIMULATED_EXECUTION_S,
    SUMMARIZE_INTERVAL,
    UNIT_COST,
)
from .cost import CostTracker
from .llm.services import Collaborators
from .memory import PatternMemory
from .nodes import analyze, archive, decide, execute, learn, perceive, validate
from .state import (
    PATTERN_KINDS,
    AgentState,
    Decision,
    DetectedObject,
    IterationAnalysis,
    OverallProgress,
    RoomAnalysis,
    RunConfig,
)

LOGGER = logging.getLogger(__name__)

OnDecision = Callable[[Decision], None]
OnAnalysis = Callable[[IterationAnalysis], None]
OnProgress = Callable[[AgentState], None]

# outcome of one iteration
_DONE = "done"
_STOPPED = "stopped"
_BUDGET = "budget"


class AutonomousDesignAgent:
    """Perceive → decide → validate → execute → analyze → learn, one change per iteration.

    The loop is the only writer of its state. ``pause``, ``resume`` and
    ``stop`` may be called from any thread; they only flip events that the
    loop checks between phases. Callers read copies through ``get_state``.
    The pattern memory belongs to the agent, so it carries over between runs.
    """

    def __init__(
        self,
        config: RunConfig,
        collaborators: Collaborators,
        *,
        memory: Optional[PatternMemory] = None,
        summarize_interval: int = SUMMARIZE_INTERVAL,
        unit_cost: float = UNIT_COST,
        pause_poll_s: float = PAUSE_POLL_S,
        simulated_execution_s: float = SIMULATED_EXECUTION_S,
    ) -> None:
        if summarize_interval < 1:
            raise ValueError("summarize_interval must be >= 1")
        self.config = config
        self.collaborators = collaborators
        self.memory = memory if memory is not None else PatternMemory(collaborators.summarize)
        self.summarize_interval = summarize_interval
        self.unit_cost = unit_cost
        self.pause_poll_s = pause_poll_s
        self.simulated_execution_s = simulated_execution_s

        self.cost = CostTracker(config.max_cost)
        self.state = AgentState()
        self._run_config = config
        self._room: Optional[RoomAnalysis] = None
        self._stop = threading.Event()
        self._resumed = threading.Event()
        self._resumed.set()

    # ------------------------------------------------------------------ control

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def stop(self) -> None:
        self._stop.set()
        # wake a paused loop so it can exit
        self._resumed.set()

    def get_state(self) -> AgentState:
        snap = self.state.snapshot()
        snap.learned_patterns = self.memory.snapshot()
        if snap.is_running and not self._resumed.is_set():
            snap.is_paused = True
            snap.status = "paused"
        return snap

    def start(self, initial_image: str, goal: Optional[str] = None, **kwargs: Any) -> threading.Thread:
        """Run on a background thread; accepts the same arguments as ``run``."""
        thread = threading.Thread(
            target=self.run,
            args=(initial_image, goal),
            kwargs=kwargs,
            name="autodesign-agent",
            daemon=True,
        )
        thread.start()
        return thread

    # ------------------------------------------------------------------ run loop

    def run(
        self,
        initial_image: str,
        goal: Optional[str] = None,
        room: Optional[RoomAnalysis] = None,
        *,
        detected_objects: Optional[List[DetectedObject]] = None,
        on_decision: Optional[OnDecision] = None,
        on_analysis: Optional[OnAnalysis] = None,
        on_progress: Optional[OnProgress] = None,
    ) -> AgentState:
        if self.state.is_running:
            raise RuntimeError("agent is already running")
        config = replace(self.config, design_goal=goal) if goal else self.config
        self._run_config = config
        self._room = room
        self.cost = CostTracker(config.max_cost)
        self._stop.clear()
        self._resumed.set()
        self.state = AgentState(is_running=True, status="running", current_image=initial_image)
        LOGGER.info(
            "Run started: goal=%r iterations=%d budget=%.2f test_mode=%s",
            config.design_goal, config.max_iterations, config.max_cost, config.test_mode,
        )
        self._notify(on_progress, self.get_state)

        # supplied objects stand in for the initial detection only
        if detected_objects is not None:
            self.state.detected_objects = list(detected_objects)
        else:
            self._perceive(initial_image)

        stopped = False
        for iteration in range(1, config.max_iterations + 1):
            if self._stop.is_set():
                stopped = True
                break
            if not self._resumed.is_set():
                self._wait_for_resume()
                if self._stop.is_set():
                    stopped = True
                    break

            self.state.current_iteration = iteration
            try:
                outcome = self._iterate(iteration, config, on_decision, on_analysis)
            except Exception as e:
                LOGGER.exception("Iteration %d failed", iteration)
                self.state.errors.append(f"Iteration {iteration}: {e}")
                outcome = _STOPPED if self._stop.is_set() else _DONE

            self.state.total_cost = self.cost.spent
            if outcome != _DONE:
                stopped = True
                break
            self._notify(on_progress, self.get_state)
            if self._stop.is_set():
                stopped = True
                break
            self._sleep(config.iteration_delay_ms / 1000.0)

        self.state.is_running = False
        self.state.is_paused = False
        self.state.status = "stopped" if stopped else "completed"
        self.state.total_cost = self.cost.spent
        LOGGER.info(
            "Run %s after %d iterations: cost=%.2f analyses=%d errors=%d",
            self.state.status, self.state.current_iteration, self.state.total_cost,
            len(self.state.analyses), len(self.state.errors),
        )
        final = self.get_state()
        self._notify(on_progress, lambda: final)
        return final

    def _iterate(
        self,
        iteration: int,
        config: RunConfig,
        on_decision: Optional[OnDecision],
        on_analysis: Optional[OnAnalysis],
    ) -> str:
        if iteration > 1 and iteration % self.summarize_interval == 0:
            for kind in PATTERN_KINDS:
                self.memory.consolidate(kind, iteration=iteration)

        decision = decide.run(
            self.collaborators,
            self.state.current_image,
            config,
            iteration,
            self.state.decisions,
            self.state.detected_objects,
            self.memory,
        )
        if self._stop.is_set():
            return _STOPPED
        self.state.decisions.append(decision)
        self._notify(on_decision, lambda: decision)
        LOGGER.info("Iteration %d decision: %s (confidence %.2f)", iteration, decision.summary(), decision.confidence)
        if decision.action == "WAIT":
            return _DONE

        outcome = validate.run(
            self.collaborators,
            decision,
            self.state.detected_objects,
            self._room,
            config.test_mode,
        )
        if self._stop.is_set():
            return _STOPPED
        if not outcome.passed:
            LOGGER.info("Iteration %d rejected before execution: %s", iteration, outcome.reason)
            self.memory.observe(
                "execution", validate.rejection_pattern(decision, outcome), REJECTION_SCORE, iteration=iteration
            )
            self._record(validate.rejection_analysis(decision, outcome), on_analysis)
            return _DONE

        if config.test_mode:
            self._sleep(self.simulated_execution_s)
            LOGGER.info("[TEST MODE] Would execute: %s", decision.prompt)
            self.state.improvements.append(execute.simulated_entry(decision))
        else:
            if not self.cost.try_reserve(self.unit_cost):
                self.state.errors.append(
                    f"Budget limit reached: no budget left for another edit "
                    f"(${self.cost.spent:.2f} of ${self.cost.max_cost:.2f} spent)"
                )
                LOGGER.warning("Budget limit reached at iteration %d", iteration)
                return _BUDGET
            self.state.total_cost = self.cost.spent
            LOGGER.info("Iteration %d reserved $%.2f ($%.2f left)", iteration, self.unit_cost, self.cost.remaining)
            new_image = execute.run(self.collaborators, self.state.current_image, decision)
            if not new_image:
                self.state.errors.append(f"Failed to generate for: {decision.target}")
                return _DONE
            # an edit that came back is always applied, even if a stop is pending
            self.state.current_image = new_image
            self.state.improvements.append(execute.applied_entry(decision))
            if self._stop.is_set():
                return _STOPPED
            self._perceive(new_image)
        if self._stop.is_set():
            return _STOPPED

        analysis = analyze.run(self.collaborators, self.state.current_image, decision, config)
        analysis = analyze.apply_style_penalty(analysis, self.state.analyses)
        if self._stop.is_set():
            return _STOPPED
        self._record(analysis, on_analysis)
        learn.run(self.memory, analysis)
        return _DONE

    # ------------------------------------------------------------------ helpers

    def _record(self, analysis: IterationAnalysis, on_analysis: Optional[OnAnalysis]) -> None:
        self.state.analyses.append(analysis)
        self._notify(on_analysis, lambda: analysis)
        self._update_progress()

    def _update_progress(self) -> None:
        analyses = self.state.analyses
        total = len(analyses)
        if total == 0:
            return
        self.state.overall_progress = OverallProgress(
            avg_quality=sum(a.quality_score for a in analyses) / total,
            avg_style_score=sum(a.style_score for a in analyses) / total,
            success_rate=sum(1 for a in analyses if a.success) / total,
            total_changes=len(self.state.improvements),
        )

    def _perceive(self, image: str) -> None:
        # an editor may hand back the same path with new content, so never reuse results
        objects = perceive.run(self.collaborators, image)
        if objects is None:
            # keep the last known scene
            return
        self.state.detected_objects = objects

    def _wait_for_resume(self) -> None:
        self.state.is_paused = True
        self.state.status = "paused"
        LOGGER.info("Paused before iteration %d", self.state.current_iteration + 1)
        while not self._resumed.is_set() and not self._stop.is_set():
            self._resumed.wait(self.pause_poll_s)
        self.state.is_paused = False
        self.state.status = "running"

    def _sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._stop.wait(seconds)

    def _notify(self, callback: Optional[Callable[[Any], None]], payload: Callable[[], Any]) -> None:
        if callback is None:
            return
        try:
            callback(payload())
        except Exception as e:
            LOGGER.exception("Callback %s failed", getattr(callback, "__name__", callback))
            self.state.errors.append(f"Callback error: {e}")

    # ------------------------------------------------------------------ export

    def export_report(self) -> str:
        return archive.export_report(self.get_state(), self._run_config)

    def export_images(self) -> List[Tuple[int, str]]:
        return archive.export_images(self.get_state())
