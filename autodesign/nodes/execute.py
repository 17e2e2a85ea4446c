from __future__ import annotations

import logging
from typing import Optional

from ..llm.services import Collaborators
from ..state import Decision

LOGGER = logging.getLogger(__name__)


def simulated_entry(decision: Decision) -> str:
    return f"[Simulated] {decision.action} - {decision.target}"


def applied_entry(decision: Decision) -> str:
    return f"{decision.action} - {decision.target}"


def run(collaborators: Collaborators, image: str, decision: Decision) -> Optional[str]:
    """Apply ``decision`` to ``image``; the new image handle, or None if nothing came back.

    Exceptions from the editor propagate: the money is already committed and
    the caller logs the failure at the iteration boundary.
    """
    LOGGER.info("Executing %s: %s", decision.summary(), decision.prompt)
    result = collaborators.execute(image, decision)
    if not result:
        return None
    return str(result)
