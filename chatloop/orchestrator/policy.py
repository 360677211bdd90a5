"""Continuation policy: decides, from the tools a turn invoked, whether to loop again."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from chatloop.config import LoopConfig

logger = logging.getLogger(__name__)


class TerminationReason(str, Enum):
    MODEL_NO_TOOLS = "model-no-tools"
    EXPLICIT_COMPLETE = "explicit-complete"
    MAX_ITERATIONS = "max-iterations"
    STREAM_ERROR = "stream-error"
    NO_ANALYSIS_TOOLS = "no-analysis-tools"
    LOOP_DISABLED = "loop-disabled"


@dataclass
class Decision:
    proceed: bool
    reason: TerminationReason | None = None


@dataclass
class ContinuationPolicy:
    analysis_tools: set[str] = field(default_factory=set)
    continue_tools: set[str] = field(default_factory=set)
    terminal_tools: set[str] = field(default_factory=set)

    @classmethod
    def from_config(cls, cfg: LoopConfig) -> ContinuationPolicy:
        return cls(
            analysis_tools=set(cfg.analysis_tools),
            continue_tools=set(cfg.continue_tools),
            terminal_tools=set(cfg.terminal_tools),
        )

    def decide(
        self,
        tool_names: Iterable[str],
        iteration: int,
        max_iterations: int,
        enable_loop: bool = True,
    ) -> Decision:
        """
        Continue tools win, then terminal tools stop, then analysis tools
        continue.  The iteration cap always applies.
        """
        names = set(tool_names)
        under_cap = iteration < max_iterations
        capped = Decision(False, TerminationReason.MAX_ITERATIONS)
        if not enable_loop:
            decision = Decision(False, TerminationReason.LOOP_DISABLED)
        elif names & self.continue_tools:
            decision = Decision(True) if under_cap else capped
        elif names & self.terminal_tools:
            decision = Decision(False, TerminationReason.EXPLICIT_COMPLETE)
        elif names & self.analysis_tools:
            decision = Decision(True) if under_cap else capped
        else:
            decision = Decision(False, TerminationReason.NO_ANALYSIS_TOOLS)

        logger.info(
            "Continuation: tools=%s iteration=%d/%d -> %s",
            sorted(names), iteration, max_iterations,
            "continue" if decision.proceed else decision.reason.value,
        )
        return decision
