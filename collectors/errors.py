# Error taxonomy for external tool invocations.

UNAVAILABLE = "tool-unavailable"
TIMEOUT = "tool-timeout"
FAILED = "tool-failed"
NOT_FOUND = "not-found"
ACCESS_DENIED = "access-denied"
NOT_APPLICABLE = "not-applicable"
RACE_LOST = "race-lost"


class ToolError(Exception):
    reason: str = FAILED

    def __init__(self, message: str, command: list[str] | None = None):
        super().__init__(message)
        self.command = command or []


class ToolUnavailable(ToolError):
    reason = UNAVAILABLE


class ToolTimeout(ToolError):
    reason = TIMEOUT


class ToolFailed(ToolError):
    reason = FAILED

    def __init__(self, message: str, command: list[str] | None = None, returncode: int | None = None):
        super().__init__(message, command)
        self.returncode = returncode


class ContainerRuntimeUnavailable(ToolUnavailable):
    pass


_BY_REASON = {
    UNAVAILABLE: ToolUnavailable,
    TIMEOUT: ToolTimeout,
}


def error_for_reason(reason: str | None, message: str, command: list[str] | None = None) -> ToolError:
    return _BY_REASON.get(reason, ToolFailed)(message, command)
