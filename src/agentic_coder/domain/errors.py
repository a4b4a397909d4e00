"""Domain and application errors."""


class CoderError(Exception):
    """Base for agentic-coder errors."""
    pass


class TaskAbortedError(CoderError):
    """ask/say was called on a task that has been aborted."""
    pass


class AskIgnoredError(CoderError):
    """A partial ask was merged or appended; the caller must not wait for a response."""
    pass


class AskAlreadyPendingError(CoderError):
    """A second non-partial ask was issued while another one is still waiting."""
    pass


class ProviderLostError(CoderError):
    """The weakly-held provider (or parent task) has been garbage collected."""
    pass


class ToolExecutionError(CoderError):
    """Tool execution failed (bad parameters, environment, or collaborator error)."""
    pass


class DiffApplyError(ToolExecutionError):
    """A diff could not be applied to the target file."""
    pass


class CheckpointError(CoderError):
    """The checkpoint snapshot service failed; checkpoints are disabled for the task."""
    pass
