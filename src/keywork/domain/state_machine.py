"""Job Lifecycle State Machine Guard.

Uses python-statemachine to enforce legal job transitions at the domain
level. Whatever the API or MCP layer asks for, an illegal transition
(e.g. available -> completed) raises TransitionNotAllowed before any
ledger call or database write happens.

The machine is instantiated per job from its stored status. It only
validates; the status column itself is written by the compare-and-set
update in JobRepository.transition.

Transition table:
    available    -> assigned      (accept)
    assigned     -> in_progress   (begin_work)
    in_progress  -> submitted     (submit)
    submitted    -> completed     (approve)
    submitted    -> in_progress   (request_revision)
    submitted    -> available     (release_to_pool)
    available    -> cancelled     (cancel)
    assigned     -> cancelled     (cancel)
    in_progress  -> cancelled     (cancel)
"""

from __future__ import annotations

from statemachine import State, StateMachine

from keywork.domain.enums import JobStatus


class JobStateMachine(StateMachine):
    """State machine that guards job lifecycle transitions.

    Usage:
        sm = JobStateMachine(current_status="assigned")
        sm.begin_work()   # transitions to in_progress
        sm.status         # "in_progress"
    """

    # --- States ---
    available = State("Available", initial=True, value=JobStatus.AVAILABLE.value)
    assigned = State("Assigned", value=JobStatus.ASSIGNED.value)
    in_progress = State("In progress", value=JobStatus.IN_PROGRESS.value)
    submitted = State("Submitted", value=JobStatus.SUBMITTED.value)
    completed = State("Completed", final=True, value=JobStatus.COMPLETED.value)
    cancelled = State("Cancelled", final=True, value=JobStatus.CANCELLED.value)

    # --- Worker-driven ---
    accept = available.to(assigned)
    begin_work = assigned.to(in_progress)
    submit = in_progress.to(submitted)

    # --- Agent review ---
    approve = submitted.to(completed)
    request_revision = submitted.to(in_progress)
    release_to_pool = submitted.to(available)

    # --- Agent cancellation (submitted jobs must be reviewed first) ---
    cancel = available.to(cancelled) | assigned.to(cancelled) | in_progress.to(cancelled)

    def __init__(self, current_status: str = JobStatus.AVAILABLE.value) -> None:
        """Initialize the machine at a stored job status.

        Args:
            current_status: A JobStatus value, e.g. "submitted".
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> str:
        """Current state value (matches JobStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Event names that can fire from the current state."""
        # Newer releases give events a humanized ``name`` and keep the identifier in ``id``.
        return [getattr(event, "id", event.name) for event in self.allowed_events]


# Which event each service operation fires, and the status it requires.
REQUIRED_STATUS: dict[str, tuple[JobStatus, ...]] = {
    "accept": (JobStatus.AVAILABLE,),
    "begin_work": (JobStatus.ASSIGNED,),
    "submit": (JobStatus.IN_PROGRESS,),
    "approve": (JobStatus.SUBMITTED,),
    "request_revision": (JobStatus.SUBMITTED,),
    "release_to_pool": (JobStatus.SUBMITTED,),
    "cancel": (JobStatus.AVAILABLE, JobStatus.ASSIGNED, JobStatus.IN_PROGRESS),
}


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a transition and return the resulting status.

    Creates a throwaway machine at ``current_status``, fires ``event_name``
    and reports where it landed.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is unknown.
    """
    sm = JobStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_name not in REQUIRED_STATUS or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
