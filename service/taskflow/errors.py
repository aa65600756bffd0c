# service/taskflow/errors.py
from __future__ import annotations


class TaskflowError(RuntimeError):
    """Base class for task workflow failures."""


class TransportError(TaskflowError):
    """Network failure, timeout or non-2xx answer from the script endpoint."""


class SchemaError(TaskflowError):
    """Remote answer is not the expected JSON / table shape."""


class TaskNotFound(TaskflowError):
    """No record matches the requested serial / task number."""


class FormStateError(TaskflowError):
    """Edit attempted on a task whose form is not open for edits."""


class FormValidationError(TaskflowError):
    """Submit attempted while the task is not ready."""


class SubmissionInFlight(TaskflowError):
    """A submission for the same task is already running."""


class UploadError(TaskflowError):
    """Attachment is mandatory for the task but the upload produced no URL."""
