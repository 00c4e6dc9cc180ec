from enum import Enum, auto

from stranger_chat.utils.error_codes import ErrorCodes, RelayError


class SessionState(Enum):
    CONNECTED = auto()  # accepted, not searching
    QUEUED = auto()
    IN_ROOM = auto()
    TERMINATED = auto()


ALLOWED_TRANSITIONS = {
    SessionState.CONNECTED: {SessionState.QUEUED, SessionState.TERMINATED},
    SessionState.QUEUED: {SessionState.CONNECTED, SessionState.IN_ROOM, SessionState.TERMINATED},
    SessionState.IN_ROOM: {SessionState.QUEUED, SessionState.CONNECTED, SessionState.TERMINATED},
    SessionState.TERMINATED: set(),
}


class StateMachine:
    def __init__(self):
        self.current_state = SessionState.CONNECTED

    def transition_to(self, new_state: SessionState):
        if new_state is self.current_state:
            return
        if new_state not in ALLOWED_TRANSITIONS[self.current_state]:
            raise RelayError(
                ErrorCodes.ERR_INVALID_STATE,
                f"Illegal transition {self.current_state.name} -> {new_state.name}",
            )
        self.current_state = new_state
