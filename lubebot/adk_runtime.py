from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger("lubebot.agent")


@dataclass
class AdkStep:
    """Step descriptor for the ordered pipeline runner."""
    name: str
    fn: Callable[[object], None]
    skip_if: Optional[Callable[[object], bool]] = None
    always_run: bool = False


class AdkAgent:
    """Run named steps in order against one mutable context object."""

    def __init__(self, steps: List[AdkStep], name: str = "agent") -> None:
        self._steps = list(steps)
        self.name = name

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: object) -> List[str]:
        """Purpose: Execute steps in order with skip/always-run guards.
        Inputs/Outputs: Input is a mutable context; output is the names of the steps
            that actually ran.
        Side Effects / State: Step functions mutate the context. Each skip is recorded
            through context.log when the context has one.
        Dependencies: AdkStep.fn and AdkStep.skip_if.
        Failure Modes: Exceptions raised by a step propagate to the caller.
        If Removed: Neither the engine nor the chat agent can run.
        Testing Notes: A step whose skip_if returns True is absent from the result
            unless always_run is set.
        """
        # always_run wins over skip_if.
        executed: List[str] = []
        for step in self._steps:
            if not step.always_run and step.skip_if and step.skip_if(context):
                logger.debug("%s: skip %s", self.name, step.name)
                log = getattr(context, "log", None)
                if callable(log):
                    log(step.name, "skipped", status="skip")
                continue
            logger.debug("%s: run %s", self.name, step.name)
            step.fn(context)
            executed.append(step.name)
        return executed
