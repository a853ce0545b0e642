import enum


class ErrorKind(str, enum.Enum):
    INSUFFICIENT_PARTICIPANTS = "insufficient-participants"
    INVALID_RESULT = "invalid-result"
    NO_ACTIVE_MATCH = "no-active-match"
    COURT_NOT_FOUND = "court-not-found"
    INVALID_QUEUE_INDEX = "invalid-queue-index"
    INVALID_MATCH_INDEX = "invalid-match-index"
    NOT_INITIALIZED = "not-initialized"
    INVALID_SAVED_STATE = "invalid-saved-state"


DEFAULT_MESSAGES = {
    ErrorKind.INSUFFICIENT_PARTICIPANTS: "Insufficient teams to start or continue matches",
    ErrorKind.INVALID_RESULT: "Invalid match result provided",
    ErrorKind.NO_ACTIVE_MATCH: "No active match in progress",
    ErrorKind.COURT_NOT_FOUND: "Court not found",
    ErrorKind.INVALID_QUEUE_INDEX: "Invalid queue index",
    ErrorKind.INVALID_MATCH_INDEX: "Invalid match index",
    ErrorKind.NOT_INITIALIZED: "System has not been initialized. Call initialize() first.",
    ErrorKind.INVALID_SAVED_STATE: "Invalid saved state format",
}


class RotationError(Exception):
    """Every failure raised by the rotation engine.

    ``kind`` tells callers which precondition was violated; match on it
    instead of subclassing.
    """

    def __init__(self, kind: ErrorKind, message: str | None = None):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    @classmethod
    def invalid_queue_index(cls, index: int, queue_length: int) -> "RotationError":
        return cls(
            ErrorKind.INVALID_QUEUE_INDEX,
            f"Invalid queue index: {index}. Queue length is {queue_length}. "
            f"Valid indices are 0 to {queue_length - 1}.",
        )
