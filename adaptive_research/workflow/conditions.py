"""
LangGraph Routing Conditions - Controls workflow transitions.

The graph has two nodes: ``route`` asks the Router for the next step(s),
``execute`` runs them. This module decides what follows ``route``.
"""

import logging
from typing import Literal

from adaptive_research.workflow.models import StepName

logger = logging.getLogger(__name__)


def route_from_router(state: dict) -> Literal["execute", "end"]:
    """
    Continue to ``execute`` unless the run is over.

    The run is over when the item carries an error, or the router returned
    no steps or only ``end``.
    """
    item = state.get("item")
    next_steps = state.get("next_steps") or []

    if item is None:
        logger.info("Ending: no work item")
        return "end"

    if item.has_error:
        logger.info("Ending: %s", type(item.error).__name__)
        return "end"

    if not next_steps or list(next_steps) == [StepName.END]:
        logger.info("Ending: router reached end after %d iterations", item.iteration_count)
        return "end"

    return "execute"
