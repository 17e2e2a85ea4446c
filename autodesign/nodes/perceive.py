from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..llm.services import Collaborators
from ..state import DetectedObject

LOGGER = logging.getLogger(__name__)


def parse_objects(raw: List[Dict[str, Any]]) -> List[DetectedObject]:
    objects: List[DetectedObject] = []
    for item in raw or []:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        box = item.get("box_2d")
        if not (isinstance(box, (list, tuple)) and len(box) == 4):
            box = None
        else:
            try:
                box = [int(round(float(v))) for v in box]
            except (TypeError, ValueError):
                box = None
        objects.append(DetectedObject(name=name, category=str(item.get("category") or "Furniture"), box_2d=box))
    return objects


def run(collaborators: Collaborators, image: str) -> Optional[List[DetectedObject]]:
    """Detect objects in ``image``; None when perception is unavailable."""
    try:
        raw = collaborators.detect_objects(image)
    except Exception as e:
        LOGGER.warning("Object detection failed for %s: %s", image, e)
        return None
    objects = parse_objects(raw)
    LOGGER.debug("Detected %d objects in %s", len(objects), image)
    return objects
