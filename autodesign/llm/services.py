from __future__ import annotations

from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from ..config import Settings
from ..state import Decision
from .gemini import call_gemini


class Collaborators(Protocol):
    """External services the run loop depends on."""

    def detect_objects(self, image: str) -> List[Dict[str, Any]]: ...

    def decide(self, image: str, context: Dict[str, Any]) -> Dict[str, Any]: ...

    def critique(self, image: str, decision_summary: Dict[str, Any]) -> Dict[str, Any]: ...

    def execute(self, image: str, decision: Decision) -> Optional[str]: ...

    def validate_spatial(self, decision: Decision, constraints: Dict[str, Any]) -> Dict[str, Any]: ...

    def summarize(self, texts: Sequence[str], kind: str) -> List[str]: ...


class GeminiCollaborators:
    """Collaborators backed by ``call_gemini``; edited images land in ``outdir``."""

    def __init__(self, outdir: str | Path, settings: Optional[Settings] = None) -> None:
        self.outdir = Path(outdir)
        self.settings = settings or Settings.from_env()

    def detect_objects(self, image: str) -> List[Dict[str, Any]]:
        res = call_gemini("detect", settings=self.settings, image_path=image)
        return list(res.get("objects", []))

    def decide(self, image: str, context: Dict[str, Any]) -> Dict[str, Any]:
        res = call_gemini("decide", settings=self.settings, image_path=image, context=context)
        return dict(res.get("decision", {}))

    def critique(self, image: str, decision_summary: Dict[str, Any]) -> Dict[str, Any]:
        res = call_gemini("critique", settings=self.settings, image_path=image, decision_summary=decision_summary)
        return dict(res.get("analysis", {}))

    def execute(self, image: str, decision: Decision) -> Optional[str]:
        out_path = self.outdir / f"edit_iter_{decision.iteration}.png"
        res = call_gemini(
            "image_edit",
            settings=self.settings,
            image_path=image,
            out_path=str(out_path),
            decision=asdict(decision),
        )
        return res.get("path") or None

    def validate_spatial(self, decision: Decision, constraints: Dict[str, Any]) -> Dict[str, Any]:
        return call_gemini(
            "validate_spatial",
            settings=self.settings,
            decision=asdict(decision),
            constraints=constraints,
        )

    def summarize(self, texts: Sequence[str], kind: str) -> List[str]:
        res = call_gemini("summarize", settings=self.settings, texts=list(texts), pattern_kind=kind)
        return list(res.get("rules", []))
