"""Per-stage state machine using the transitions library.

Every pipeline stage moves through:

    pending -> running -> completed | failed
    pending -> running -> awaiting_approval -> approved -> publishing -> completed | failed
                                            -> rejected

Gated stages suspend in awaiting_approval until a decision arrives. A stage
can only start once its predecessor (if any) has completed.

Usage:
    from sdlcflow.workflow.fsm import StageFSM

    fsm = StageFSM("implementation", predecessor=epic_fsm)
    fsm.start()
    fsm.await_approval()
    fsm.approve()
    fsm.publish()
    fsm.complete()
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)


STATES = [
    "pending",
    "running",
    "awaiting_approval",
    "approved",
    "publishing",
    "completed",
    "failed",
    "rejected",
]

TERMINAL_STATES = {"completed", "failed", "rejected"}

TRANSITIONS = [
    # Generation
    {"trigger": "start", "source": "pending", "dest": "running", "conditions": "predecessor_completed"},

    # Ungated stages finish straight from running
    {"trigger": "complete", "source": "running", "dest": "completed"},

    # Gate
    {"trigger": "await_approval", "source": "running", "dest": "awaiting_approval"},
    {"trigger": "approve", "source": "awaiting_approval", "dest": "approved"},
    {"trigger": "reject", "source": "awaiting_approval", "dest": "rejected"},

    # Publish phase after approval
    {"trigger": "publish", "source": "approved", "dest": "publishing"},
    {"trigger": "complete", "source": "publishing", "dest": "completed"},

    # Failure from any active state
    {"trigger": "fail", "source": "running", "dest": "failed"},
    {"trigger": "fail", "source": "awaiting_approval", "dest": "failed"},
    {"trigger": "fail", "source": "approved", "dest": "failed"},
    {"trigger": "fail", "source": "publishing", "dest": "failed"},
]


class StageFSM:
    """State machine for one stage of one pipeline run.

    Held in memory only: a run is a single process, and the artifact store
    plus recorded gate decisions are what survive between runs.
    """

    def __init__(
        self,
        stage: str,
        predecessor: "StageFSM | None" = None,
        on_transition: Callable[[str, str, str, str], None] | None = None,
    ):
        """
        Args:
            stage: Stage name
            predecessor: FSM of the stage that must complete first
            on_transition: Optional callback(stage, from_state, to_state, trigger)
        """
        self.stage = stage
        self.predecessor = predecessor
        self.on_transition = on_transition
        self.history: list[tuple[str, str, str]] = []

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="pending",
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    def predecessor_completed(self, event) -> bool:
        """Condition for start: the previous stage has completed."""
        if self.predecessor is None:
            return True
        if self.predecessor.state != "completed":
            logger.warning(
                f"[FSM] {self.stage}: cannot start, predecessor "
                f"{self.predecessor.stage} is {self.predecessor.state}"
            )
            return False
        return True

    def on_state_change(self, event) -> None:
        """Callback after any state transition."""
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.stage}: {from_state} -> {to_state} ({trigger})")
        self.history.append((from_state, to_state, trigger))

        if self.on_transition:
            self.on_transition(self.stage, from_state, to_state, trigger)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        """Get list of triggers available in current state."""
        return self.machine.get_triggers(self.state)
