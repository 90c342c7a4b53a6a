"""Scope error taxonomy — every failure the engine reports to a caller."""


class ScopeError(Exception):
    """Base class. ``error_type`` is the name sent over IPC."""

    error_type = "ScopeError"


class InvalidScopeType(ScopeError):
    """Requested scope kind is not one of the registered types."""

    error_type = "InvalidScopeType"

    def __init__(self, scope_type):
        self.scope_type = scope_type
        super().__init__(f"Invalid scope type: {scope_type}")


class InvalidScopeOption(InvalidScopeType):
    """A scope type is valid but one of its options is not."""

    def __init__(self, scope_type: str, option: str, value, choices: list[str]):
        self.scope_type = scope_type
        self.option = option
        self.value = value
        ScopeError.__init__(
            self,
            f"Invalid {option} for {scope_type}: {value} (allowed: {choices})",
        )


class MalformedImage(ScopeError):
    """Width/height/buffer are inconsistent or unusable."""

    error_type = "MalformedImage"


class ComputationFault(ScopeError):
    """Unexpected failure inside a reduction. Wraps the original exception."""

    error_type = "ComputationFault"

    def __init__(self, scope_type: str, cause: BaseException):
        self.scope_type = scope_type
        self.cause = cause
        super().__init__(f"{scope_type} failed: {type(cause).__name__}")
