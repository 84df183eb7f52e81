"""Video status lifecycle finite state machine.

Each record gets its own FSM instance, initialized at the record's current
status.  Used to validate transition legality before
:class:`~streamingest.upload.state.AsyncVideoStore` persists a terminal
status.

The FSM is purely a validation tool -- it does NOT perform DB writes or
have on_enter_state callbacks.
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from streamingest.models import VideoStatus


class VideoLifecycleSM(StateMachine):
    """Three-state lifecycle for a video on the remote platform.

    States:
        processing -- Upload accepted, remote pipeline still working.
        ready      -- Remote pipeline finished; playable.
        error      -- Remote pipeline (or the transfer) failed.

    ``ready`` and ``error`` are final states with no outgoing transitions.
    """

    processing = State("processing", initial=True, value="processing")
    ready = State("ready", value="ready", final=True)
    error = State("error", value="error", final=True)

    become_ready = processing.to(ready)
    fail = processing.to(error)


_TRANSITIONS = {
    VideoStatus.READY: "become_ready",
    VideoStatus.ERROR: "fail",
}


def create_fsm(current_status: VideoStatus | str) -> VideoLifecycleSM:
    """Create an FSM instance at the given status."""
    return VideoLifecycleSM(start_value=VideoStatus(current_status).value)


def can_transition(current_status: VideoStatus | str, target: VideoStatus) -> bool:
    """Return whether *current_status* may move to *target*."""
    event = _TRANSITIONS.get(target)
    if event is None:
        return False
    fsm = create_fsm(current_status)
    try:
        getattr(fsm, event)()
    except TransitionNotAllowed:
        return False
    return True
