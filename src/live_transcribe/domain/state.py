from enum import Enum, auto


class SessionPhase(Enum):
    IDLE = auto()
    STARTING = auto()
    ACTIVE = auto()
    STOPPING = auto()


VALID_TRANSITIONS: dict[SessionPhase, set[SessionPhase]] = {
    SessionPhase.IDLE: {SessionPhase.STARTING},
    SessionPhase.STARTING: {SessionPhase.ACTIVE, SessionPhase.STOPPING, SessionPhase.IDLE},
    SessionPhase.ACTIVE: {SessionPhase.STOPPING},
    SessionPhase.STOPPING: {SessionPhase.IDLE},
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: SessionPhase, target: SessionPhase) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
