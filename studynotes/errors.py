"""Error taxonomy shared by the API and the worker.

Every error carries the HTTP status it maps to on the API side. The worker
only cares about the split between configuration problems (abort the batch)
and everything else (fail the single record).
"""


class StudyNotesError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StudyNotesError):
    """Bad or missing input. Never retried."""

    status_code = 422


class InvalidPayloadError(ValidationError):
    """Input that cannot be parsed at all (bad JSON, bad cursor, bad limit)."""

    status_code = 400


class NotFoundError(StudyNotesError):
    status_code = 404


class ConfigurationError(StudyNotesError):
    """A required parameter is missing from the parameter store."""


class DependencyError(StudyNotesError):
    """The store, queue, notification channel or generation backend failed."""


class TaskExistsError(DependencyError):
    pass


class GenerationError(DependencyError):
    pass
