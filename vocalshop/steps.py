from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger("vocalshop.steps")


@dataclass
class Step:
    """One named stage of an assistant turn."""
    name: str
    fn: Callable[["TurnLike"], None]
    skip_if: Optional[Callable[["TurnLike"], bool]] = None
    always_run: bool = False


class TurnLike:
    """Minimal protocol expected by StepRunner: a session id and a handled flag."""
    session_id: str
    handled: bool


class StepRunner:
    """Runs assistant stages in order until one marks the turn as handled."""

    def __init__(self, steps: List[Step]) -> None:
        """Purpose: Register the ordered stages of a turn.
        Inputs/Outputs: Input is a list of Step; no return value.
        Side Effects / State: Stores the step list for later execution.
        Dependencies: None beyond Step definitions.
        Failure Modes: None; assumes valid callables in steps.
        If Removed: The assistant cannot answer any message.
        Testing Notes: Check that names preserves registration order.
        """
        self._steps = list(steps)

    @property
    def names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, turn: TurnLike) -> None:
        """Purpose: Execute stages in order.
        Inputs/Outputs: Input is the mutable turn; no return value.
        Side Effects / State: Stages mutate the turn. Once turn.handled is set, only
            always_run stages still execute (e.g. finalize).
        Dependencies: Step.fn, Step.skip_if, Step.always_run.
        Failure Modes: Exceptions in stages propagate to the caller.
        If Removed: Stage ordering and short-circuiting must be re-implemented inline.
        Testing Notes: A stage that sets handled=True prevents the next regular stage.
        """
        # Short-circuit on handled turns, but keep always_run stages.
        for step in self._steps:
            if not step.always_run:
                if turn.handled:
                    continue
                if step.skip_if and step.skip_if(turn):
                    continue
            started = time.perf_counter()
            step.fn(turn)
            logger.debug(
                "session=%s step=%s elapsed_ms=%.1f",
                turn.session_id,
                step.name,
                (time.perf_counter() - started) * 1000,
            )
