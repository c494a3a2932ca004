"""Exception taxonomy for analysis and verification."""


class CodestructError(Exception):
    """Base error for the analysis core."""


class UnsupportedLanguageError(CodestructError):
    """Raised when no parser adapter exists for a file's language."""

    def __init__(self, path: str, language: str | None):
        self.path = path
        self.language = language
        super().__init__(f"Unsupported language for '{path}': {language or 'unknown'}")


class ParseError(CodestructError):
    """Raised where a partial tree is not acceptable."""

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        super().__init__(f"Parse error in '{path}': {message}")


class DetectorFailure(CodestructError):
    """One detector raised while analysing one file.

    Never propagated out of an analysis run; the framework records it and
    carries on with the remaining detectors and files.
    """

    def __init__(self, detector: str, path: str, cause: BaseException):
        self.detector = detector
        self.path = path
        self.cause = cause
        super().__init__(f"Detector '{detector}' failed on '{path}': {cause!r}")


class GeneratorUnavailableError(CodestructError):
    """The external refactoring generator could not produce a candidate."""

    def __init__(self, issue_type: str, reason: str):
        self.issue_type = issue_type
        self.reason = reason
        super().__init__(f"No refactoring candidate for {issue_type}: {reason}")


class InvalidStateTransitionError(ValueError):
    """Raised when a state machine is asked for a transition it does not allow."""

    def __init__(self, machine: str, current: str, new: str):
        self.machine = machine
        self.current = current
        self.new = new
        super().__init__(f"Invalid {machine} transition: '{current}' -> '{new}'")
