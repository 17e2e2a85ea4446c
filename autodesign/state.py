from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Literal, Optional, Tuple, TypeVar

Action = Literal["MOVE", "EDIT", "REMOVE", "WAIT"]
ACTIONS: Tuple[str, ...] = ("MOVE", "EDIT", "REMOVE", "WAIT")

PatternKind = Literal["execution", "style"]
PATTERN_KINDS: Tuple[str, ...] = ("execution", "style")

RunStatus = Literal["idle", "running", "paused", "stopped", "completed"]

T = TypeVar("T")


@dataclass(frozen=True)
class RunConfig:
    design_goal: str
    test_mode: bool = False
    max_iterations: int = 10
    iteration_delay_ms: int = 1000
    max_cost: float = 0.4
    style_keywords: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.max_iterations < 0:
            raise ValueError("max_iterations must be >= 0")
        if self.iteration_delay_ms < 0:
            raise ValueError("iteration_delay_ms must be >= 0")
        if self.max_cost < 0:
            raise ValueError("max_cost must be >= 0")
        # accept any iterable of keywords but store an immutable tuple
        object.__setattr__(self, "style_keywords", tuple(str(k) for k in self.style_keywords))


@dataclass
class DetectedObject:
    name: str
    category: str = "Furniture"
    box_2d: Optional[List[int]] = None


@dataclass
class RoomAnalysis:
    """Spatial context handed to the physical-constraint validator."""

    room_type: str = "unknown"
    constraints: List[Dict[str, str]] = field(default_factory=list)
    traffic_flow: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoomAnalysis":
        constraints = [
            {
                "type": str(c.get("type", "")),
                "location": str(c.get("location", "")),
                "description": str(c.get("description", "")),
            }
            for c in (data.get("constraints") or [])
            if isinstance(c, dict)
        ]
        return cls(
            room_type=str(data.get("room_type", "unknown")),
            constraints=constraints,
            traffic_flow=str(data.get("traffic_flow", "")),
        )


@dataclass
class Pattern:
    id: str
    content: str
    score: float
    frequency: int = 1
    last_iteration: int = 0


@dataclass
class LearnedPatterns:
    execution: List[Pattern] = field(default_factory=list)
    style: List[Pattern] = field(default_factory=list)


@dataclass(frozen=True)
class Decision:
    iteration: int
    action: Action
    target: str
    reason: str
    prompt: str
    confidence: float
    estimated_cost: float
    style_alignment: Optional[str] = None

    def summary(self) -> str:
        return f"{self.action} {self.target}"


@dataclass(frozen=True)
class IterationAnalysis:
    iteration: int
    timestamp: datetime
    decision: Decision
    quality_score: float
    style_score: float
    success: bool
    strengths: Tuple[str, ...] = ()
    weaknesses: Tuple[str, ...] = ()
    style_notes: str = ""
    lesson_learned: str = ""
    better_approach: Optional[str] = None
    image_ref: Optional[str] = None
    # confidence fed into pattern memory (after the style-regression penalty)
    confidence: float = 0.0
    rejected: bool = False
    # the critic gave no usable verdict; nothing is learned from it
    analysis_failed: bool = False


@dataclass
class SpatialValidation:
    valid: bool
    warnings: List[str] = field(default_factory=list)
    alternative_suggestion: Optional[str] = None


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Outcome of parsing a model response: a value, or the reason there is none."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    @classmethod
    def success(cls, value: T) -> "ParseResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "ParseResult[T]":
        return cls(error=error)


@dataclass
class OverallProgress:
    avg_quality: float = 0.0
    avg_style_score: float = 0.0
    success_rate: float = 0.0
    total_changes: int = 0


@dataclass
class AgentState:
    is_running: bool = False
    is_paused: bool = False
    status: RunStatus = "idle"
    current_iteration: int = 0
    total_cost: float = 0.0
    decisions: List[Decision] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    current_image: str = ""
    analyses: List[IterationAnalysis] = field(default_factory=list)
    overall_progress: OverallProgress = field(default_factory=OverallProgress)
    learned_patterns: LearnedPatterns = field(default_factory=LearnedPatterns)
    detected_objects: List[DetectedObject] = field(default_factory=list)

    def snapshot(self) -> "AgentState":
        # decisions and analyses are frozen; everything else is copied so the
        # caller never holds a live reference into the loop's state
        return AgentState(
            is_running=self.is_running,
            is_paused=self.is_paused,
            status=self.status,
            current_iteration=self.current_iteration,
            total_cost=self.total_cost,
            decisions=list(self.decisions),
            improvements=list(self.improvements),
            errors=list(self.errors),
            current_image=self.current_image,
            analyses=list(self.analyses),
            overall_progress=copy.copy(self.overall_progress),
            learned_patterns=copy.deepcopy(self.learned_patterns),
            detected_objects=copy.deepcopy(self.detected_objects),
        )
