"""Custom exceptions for the workflow execution engine."""


class WorkflowEngineError(Exception):
    """Base exception for the workflow execution engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code the route layer should map this to
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Definition, instance or task not found (or outside organization scope)."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(WorkflowEngineError):
    """Malformed definition or request."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class MissingStartNodeError(ValidationError):
    """Workflow definition has no start node."""

    def __init__(self, workflow_id: str = ""):
        suffix = f" ({workflow_id})" if workflow_id else ""
        super().__init__(f"Workflow must have a start node{suffix}")
        self.workflow_id = workflow_id


class InvalidTransitionError(WorkflowEngineError):
    """Lifecycle action not allowed in the instance's current status."""

    def __init__(self, status: str, action: str):
        super().__init__(f"Cannot {action} a workflow instance that is {status}", 409)
        self.status = status
        self.action = action


class UnsupportedStepTypeError(WorkflowEngineError):
    """Step type tag with no registered processor."""

    def __init__(self, step_type: str):
        super().__init__(f"Unsupported step type: {step_type}", 422)
        self.step_type = step_type


class ConcurrentModificationError(WorkflowEngineError):
    """Versioned update lost against a concurrent writer."""

    def __init__(self, instance_id: str, expected_version: int):
        super().__init__(
            f"Workflow instance {instance_id} was modified concurrently "
            f"(expected version {expected_version})",
            409,
        )
        self.instance_id = instance_id
        self.expected_version = expected_version


class WorkflowStalledError(WorkflowEngineError):
    """Step advancement exceeded the per-invocation bound."""

    def __init__(self, instance_id: str, max_steps: int):
        super().__init__(
            f"Workflow instance {instance_id} did not suspend or finish "
            f"within {max_steps} steps",
            500,
        )
        self.instance_id = instance_id
        self.max_steps = max_steps


class WorkflowProcessingError(WorkflowEngineError):
    """Unexpected failure while a step was being processed."""

    def __init__(self, cause: Exception):
        super().__init__(f"Failed to process workflow instance: {cause}", 500)
        self.cause = cause
