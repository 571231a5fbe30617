from typing import Any, Optional


class AssessmentError(Exception):
    """Base class for errors raised by score structure and CBT import operations."""


class ValidationError(AssessmentError):
    """Bad input shape or values, e.g. a negative score or a missing override."""


class ConfigurationError(AssessmentError):
    """No maximum score can be resolved for a component."""


class StaleContextError(AssessmentError):
    """A link was created against a session/term that is not the school's current one."""


class ConflictError(AssessmentError):
    """A row's status changed under us; re-read it and retry if still applicable."""

    def __init__(self, message: str, row_id: Optional[str] = None):
        super().__init__(message)
        self.row_id = row_id


class ReconciliationError(AssessmentError):
    """Wraps the summary of an import or sync that finished with failed rows."""

    def __init__(self, message: str, summary: Any):
        super().__init__(message)
        self.summary = summary


class ExamUnavailableError(AssessmentError):
    """The CBT catalog cannot serve an exam or its attempts right now."""
