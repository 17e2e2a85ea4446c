from __future__ import annotations

import json
import threading

import pytest

from autodesign.agent import AutonomousDesignAgent
from autodesign.state import DetectedObject, RoomAnalysis, RunConfig

EDIT_SOFA = {"action": "EDIT", "target": "Sofa", "reason": "dated fabric", "prompt": "reupholster the sofa in oatmeal linen", "confidence": 0.8}
WAIT = {"action": "WAIT", "target": "Room", "reason": "looks done", "prompt": "Wait", "confidence": 0.6}


class FakeCollaborators:
    def __init__(self, decisions=None, critiques=None, objects=None, spatial=None) -> None:
        self.decisions = list(decisions or [])
        self.critiques = list(critiques or [])
        self.objects = objects if objects is not None else [
            {"name": "Sofa", "category": "Furniture"},
            {"name": "Coffee Table", "category": "Furniture"},
        ]
        self.spatial = spatial or {"valid": True, "warnings": []}
        self.edits = True
        self.edit_in_place = False
        self.execute_error: Exception | None = None
        self.decide_error: Exception | None = None
        self.fail_detect: set = set()
        self.on_execute = None
        self.contexts: list = []
        self.detect_calls: list = []
        self.critique_calls: list = []
        self.spatial_calls: list = []
        self.executed: list = []
        self.summaries: list = []

    def detect_objects(self, image):
        self.detect_calls.append(image)
        if image in self.fail_detect:
            raise RuntimeError("vision offline")
        return [dict(o) for o in self.objects]

    def decide(self, image, context):
        self.contexts.append(context)
        if self.decide_error:
            raise self.decide_error
        item = self.decisions.pop(0) if self.decisions else EDIT_SOFA
        if callable(item):
            item = item(context)
        return dict(item)

    def critique(self, image, decision_summary):
        self.critique_calls.append((image, decision_summary))
        if self.critiques:
            return dict(self.critiques.pop(0))
        n = len(self.critique_calls)
        return {"qualityScore": 90, "styleScore": 80, "success": True, "lessonLearned": f"lesson {n}"}

    def execute(self, image, decision):
        self.executed.append((image, decision.summary()))
        if self.on_execute:
            self.on_execute()
        if self.execute_error:
            raise self.execute_error
        if not self.edits:
            return None
        if self.edit_in_place:
            return image
        return f"edit_{decision.iteration}.png"

    def validate_spatial(self, decision, constraints):
        self.spatial_calls.append((decision.summary(), constraints))
        return dict(self.spatial)

    def summarize(self, texts, kind):
        # record how many decisions were requested before consolidation
        self.summaries.append((kind, len(self.contexts), list(texts)))
        return [f"{kind} rule"]


def make_agent(fake: FakeCollaborators, **config) -> AutonomousDesignAgent:
    config.setdefault("design_goal", "cozy scandinavian living room")
    config.setdefault("iteration_delay_ms", 0)
    return AutonomousDesignAgent(RunConfig(**config), fake, pause_poll_s=0.01, simulated_execution_s=0)


def test_budget_exhaustion_stops_the_run() -> None:
    fake = FakeCollaborators()
    agent = make_agent(fake, max_iterations=3, max_cost=0.08)

    state = agent.run("room.png")

    assert state.status == "stopped"
    assert state.total_cost == pytest.approx(0.08)
    assert state.total_cost <= 0.08
    assert len(fake.executed) == 2
    assert len(state.analyses) == 2
    assert any("budget" in e.lower() for e in state.errors)
    assert state.current_image == "edit_2.png"


def test_wait_costs_nothing_and_advances() -> None:
    fake = FakeCollaborators(decisions=[WAIT, WAIT, WAIT])
    progress: list = []
    agent = make_agent(fake, max_iterations=3)

    state = agent.run("room.png", on_progress=progress.append)

    assert state.status == "completed"
    assert state.current_iteration == 3
    assert [d.action for d in state.decisions] == ["WAIT"] * 3
    assert state.analyses == []
    assert state.total_cost == 0.0
    assert fake.executed == []
    assert len(progress) == 5


def test_missing_target_is_rejected_and_learned() -> None:
    move_shelf = {"action": "MOVE", "target": "floating shelf", "reason": "balance", "prompt": "move the shelf", "confidence": 0.7}
    fake = FakeCollaborators(decisions=[move_shelf])
    agent = make_agent(fake, max_iterations=1)

    state = agent.run("room.png")

    avoid = [p for p in state.learned_patterns.execution if p.content.startswith("Avoid MOVE on floating shelf")]
    assert avoid and avoid[0].score >= 0.8
    assert fake.executed == []
    assert fake.critique_calls == []
    assert fake.spatial_calls == []
    assert state.total_cost == 0.0
    assert state.analyses[0].rejected is True
    assert state.analyses[0].success is False


def test_spatial_violation_is_rejected_before_spending() -> None:
    move_sofa = {"action": "MOVE", "target": "Sofa", "reason": "flow", "prompt": "move the sofa", "confidence": 0.7}
    fake = FakeCollaborators(decisions=[move_sofa], spatial={"valid": False, "warnings": ["Sofa would block the door"]})
    room = RoomAnalysis(room_type="living room", constraints=[{"type": "door", "location": "north", "description": "keep door clear"}])
    agent = make_agent(fake, max_iterations=1)

    state = agent.run("room.png", room=room)

    assert fake.spatial_calls[0][1]["constraints"][0]["type"] == "door"
    assert state.analyses[0].rejected is True
    assert state.total_cost == 0.0
    assert "Avoid MOVE on Sofa: Sofa would block the door" in [p.content for p in state.learned_patterns.execution]


def test_consolidation_runs_every_fifth_iteration() -> None:
    fake = FakeCollaborators()
    agent = make_agent(fake, max_iterations=12, test_mode=True)

    state = agent.run("room.png")

    style_calls = [(n, texts) for kind, n, texts in fake.summaries if kind == "style"]
    assert [n for n, _ in style_calls] == [4, 9]
    assert sorted(style_calls[0][1]) == ["lesson 1", "lesson 2", "lesson 3", "lesson 4"]
    contents = [p.content for p in state.learned_patterns.style]
    assert "style rule" in contents
    assert not any(c in contents for c in [f"lesson {i}" for i in range(1, 10)])
    assert "lesson 12" in contents


def test_stop_during_first_decision_keeps_initial_image() -> None:
    def stop_then_edit(context):
        agent.stop()
        return EDIT_SOFA

    fake = FakeCollaborators(decisions=[stop_then_edit])
    agent = make_agent(fake, max_iterations=3)

    state = agent.run("room.png")

    assert state.status == "stopped"
    assert state.current_image == "room.png"
    assert state.decisions == []
    assert fake.executed == []
    assert state.total_cost == 0.0


def test_stop_during_later_decision_keeps_last_edit() -> None:
    def stop_then_edit(context):
        agent.stop()
        return EDIT_SOFA

    fake = FakeCollaborators(decisions=[EDIT_SOFA, stop_then_edit])
    agent = make_agent(fake, max_iterations=3)

    state = agent.run("room.png")

    assert state.current_image == "edit_1.png"
    assert len(state.decisions) == 1
    assert len(fake.executed) == 1


def test_stop_during_execution_still_applies_the_edit() -> None:
    fake = FakeCollaborators()
    agent = make_agent(fake, max_iterations=3)
    fake.on_execute = agent.stop

    state = agent.run("room.png")

    assert state.status == "stopped"
    assert state.current_image == "edit_1.png"
    assert state.improvements == ["EDIT - Sofa"]
    assert state.analyses == []
    assert state.total_cost == pytest.approx(0.04)


def test_empty_edit_result_is_recorded_and_run_continues() -> None:
    fake = FakeCollaborators()
    fake.edits = False
    agent = make_agent(fake, max_iterations=2)

    state = agent.run("room.png")

    assert state.status == "completed"
    assert state.errors == ["Failed to generate for: Sofa"] * 2
    assert state.current_image == "room.png"
    assert state.total_cost == pytest.approx(0.08)
    assert state.analyses == []


def test_iteration_errors_are_contained() -> None:
    fake = FakeCollaborators()
    fake.execute_error = RuntimeError("quota exceeded")
    agent = make_agent(fake, max_iterations=2)

    state = agent.run("room.png")

    assert state.status == "completed"
    assert state.errors == ["Iteration 1: quota exceeded", "Iteration 2: quota exceeded"]
    assert state.current_iteration == 2


def test_decision_failure_becomes_wait() -> None:
    fake = FakeCollaborators()
    fake.decide_error = RuntimeError("model overloaded")
    agent = make_agent(fake, max_iterations=1)

    state = agent.run("room.png")

    assert state.decisions[0].action == "WAIT"
    assert state.decisions[0].confidence == 0.0
    assert fake.executed == []


def test_test_mode_simulates_edits_without_cost() -> None:
    fake = FakeCollaborators()
    agent = make_agent(fake, max_iterations=2, test_mode=True)

    state = agent.run("room.png")

    assert state.improvements == ["[Simulated] EDIT - Sofa"] * 2
    assert state.total_cost == 0.0
    assert fake.executed == []
    assert fake.spatial_calls == []
    assert state.current_image == "room.png"
    assert all(a.image_ref is None for a in state.analyses)


def test_style_regression_is_penalized_end_to_end() -> None:
    fake = FakeCollaborators(critiques=[
        {"qualityScore": 90, "styleScore": 80, "success": True, "lessonLearned": "linen softens"},
        {"qualityScore": 90, "styleScore": 60, "success": True, "lessonLearned": "chrome feels cold"},
    ])
    agent = make_agent(fake, max_iterations=2, test_mode=True)

    state = agent.run("room.png")

    second = state.analyses[1]
    assert second.success is False
    assert second.confidence == pytest.approx(0.45)
    rules = {p.content: p.score for p in state.learned_patterns.execution}
    assert rules["EDIT on Sofa works"] == pytest.approx(0.9)
    assert rules["Avoid EDIT on Sofa"] == pytest.approx(0.45)
    assert state.overall_progress.success_rate == pytest.approx(0.5)


def test_progress_aggregates_include_rejections() -> None:
    move_shelf = {"action": "MOVE", "target": "floating shelf", "reason": "r", "prompt": "p", "confidence": 0.5}
    fake = FakeCollaborators(decisions=[move_shelf, EDIT_SOFA])
    agent = make_agent(fake, max_iterations=2, test_mode=True)

    progress = agent.run("room.png").overall_progress

    assert progress.avg_quality == pytest.approx(0.45)
    assert progress.avg_style_score == pytest.approx(0.4)
    assert progress.success_rate == pytest.approx(0.5)
    assert progress.total_changes == 1


def test_callbacks_fire_in_order() -> None:
    events: list = []
    agent = make_agent(FakeCollaborators(), max_iterations=1, test_mode=True)

    agent.run(
        "room.png",
        on_decision=lambda d: events.append(("decision", d.iteration)),
        on_analysis=lambda a: events.append(("analysis", a.iteration)),
        on_progress=lambda s: events.append(("progress", s.status)),
    )

    assert events == [
        ("progress", "running"),
        ("decision", 1),
        ("analysis", 1),
        ("progress", "running"),
        ("progress", "completed"),
    ]


def test_callback_errors_do_not_abort_the_run() -> None:
    def boom(decision):
        raise ValueError("display closed")

    agent = make_agent(FakeCollaborators(), max_iterations=2, test_mode=True)

    state = agent.run("room.png", on_decision=boom)

    assert state.status == "completed"
    assert state.errors == ["Callback error: display closed"] * 2
    assert len(state.analyses) == 2


def test_run_refuses_to_start_twice() -> None:
    agent = make_agent(FakeCollaborators(), max_iterations=1, test_mode=True)

    state = agent.run("room.png", on_decision=lambda d: agent.run("other.png"))

    assert state.errors == ["Callback error: agent is already running"]


def test_get_state_returns_copies() -> None:
    agent = make_agent(FakeCollaborators(), max_iterations=2, test_mode=True)
    agent.run("room.png")

    snap = agent.get_state()
    snap.decisions.clear()
    snap.improvements.clear()
    snap.learned_patterns.execution.clear()

    fresh = agent.get_state()
    assert len(fresh.decisions) == 2
    assert len(fresh.improvements) == 2
    assert fresh.learned_patterns.execution


def test_pause_and_resume_from_another_thread() -> None:
    seen: list = []

    def pause_once(decision):
        if decision.iteration == 1:
            agent.pause()
            state = agent.get_state()
            seen.append((state.is_paused, state.status))
            threading.Timer(0.05, agent.resume).start()

    agent = make_agent(FakeCollaborators(), max_iterations=2, test_mode=True)

    state = agent.run("room.png", on_decision=pause_once)

    assert seen == [(True, "paused")]
    assert state.status == "completed"
    assert len(state.decisions) == 2
    assert state.is_paused is False


def test_stop_while_paused_ends_the_run() -> None:
    def pause_then_stop(decision):
        agent.pause()
        threading.Timer(0.05, agent.stop).start()

    agent = make_agent(FakeCollaborators(), max_iterations=5, test_mode=True)

    state = agent.run("room.png", on_decision=pause_then_stop)

    assert state.status == "stopped"
    assert len(state.decisions) == 1
    assert len(state.analyses) == 1


def test_start_runs_in_background() -> None:
    agent = make_agent(FakeCollaborators(), max_iterations=2, test_mode=True)

    thread = agent.start("room.png", "industrial loft")
    thread.join(timeout=5)

    assert not thread.is_alive()
    state = agent.get_state()
    assert state.status == "completed"
    assert state.is_running is False


def test_goal_override_reaches_the_decider() -> None:
    fake = FakeCollaborators()
    agent = make_agent(fake, max_iterations=1, test_mode=True)

    agent.run("room.png", "industrial loft")

    assert fake.contexts[0]["design_goal"] == "industrial loft"
    assert json.loads(agent.export_report())["metadata"]["designGoal"] == "industrial loft"


def test_memory_carries_over_between_runs() -> None:
    fake = FakeCollaborators()
    agent = make_agent(fake, max_iterations=1, test_mode=True)

    agent.run("room.png")
    agent.run("room.png")

    assert fake.contexts[-1]["execution_patterns"][0]["content"] == "EDIT on Sofa works"
    assert agent.get_state().current_iteration == 1


def test_every_edit_is_perceived_again_across_runs() -> None:
    fake = FakeCollaborators()
    agent = make_agent(fake, max_iterations=2)

    agent.run("room.png")
    agent.run("room.png")

    assert fake.detect_calls == ["room.png", "edit_1.png", "edit_2.png"] * 2


def test_in_place_edit_refreshes_the_scene() -> None:
    remove_sofa = {"action": "REMOVE", "target": "Sofa", "reason": "clutter", "prompt": "remove the sofa", "confidence": 0.7}
    move_sofa = {"action": "MOVE", "target": "Sofa", "reason": "flow", "prompt": "move the sofa", "confidence": 0.7}
    fake = FakeCollaborators(decisions=[remove_sofa, move_sofa])
    fake.edit_in_place = True
    fake.on_execute = lambda: fake.objects.pop(0)
    agent = make_agent(fake, max_iterations=2)

    state = agent.run("room.png")

    assert fake.detect_calls == ["room.png", "room.png"]
    assert fake.executed == [("room.png", "REMOVE Sofa")]
    assert [o.name for o in state.detected_objects] == ["Coffee Table"]
    assert state.analyses[1].rejected is True
    assert state.total_cost == pytest.approx(0.04)


def test_failed_perception_keeps_last_known_objects() -> None:
    fake = FakeCollaborators()
    fake.fail_detect = {"edit_1.png"}
    agent = make_agent(fake, max_iterations=1)

    state = agent.run("room.png")

    assert [o.name for o in state.detected_objects] == ["Sofa", "Coffee Table"]


def test_provided_objects_skip_initial_detection() -> None:
    move_chair = {"action": "MOVE", "target": "Armchair", "reason": "r", "prompt": "p", "confidence": 0.5}
    fake = FakeCollaborators(decisions=[move_chair])
    agent = make_agent(fake, max_iterations=1, test_mode=True)

    state = agent.run("room.png", detected_objects=[DetectedObject("Armchair")])

    assert fake.detect_calls == []
    assert state.analyses[0].rejected is False


def test_zero_iterations_completes_immediately() -> None:
    fake = FakeCollaborators()
    agent = make_agent(fake, max_iterations=0)

    state = agent.run("room.png")

    assert state.status == "completed"
    assert fake.contexts == []


def test_export_images_lists_edited_iterations() -> None:
    agent = make_agent(FakeCollaborators(), max_iterations=2)
    agent.run("room.png")

    assert agent.export_images() == [(1, "edit_1.png"), (2, "edit_2.png")]


def test_critic_reported_failure_is_still_learned() -> None:
    fake = FakeCollaborators(critiques=[
        {"qualityScore": 100, "styleScore": 20, "success": False, "lessonLearned": "keep wood tones"},
    ])
    agent = make_agent(fake, max_iterations=1, test_mode=True)

    state = agent.run("room.png")

    assert state.analyses[0].success is False
    assert [p.content for p in state.learned_patterns.execution] == ["Avoid EDIT on Sofa"]
    assert [p.content for p in state.learned_patterns.style] == ["keep wood tones"]
