"""Error taxonomy for the property sales workflow.

Engine-level errors (storage, conflicts) propagate to the caller. Agent-level
errors are absorbed by the engine at the node boundary and recorded in state.
"""


class PropertySalesError(Exception):
    """Base class for all workflow errors."""

    def __init__(
        self,
        message: str,
        *,
        thread_id: str | None = None,
        node: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.thread_id = thread_id
        self.node = node

    def __str__(self) -> str:
        context = [f"{k}={v}" for k, v in (("thread", self.thread_id), ("node", self.node)) if v]
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class ValidationError(PropertySalesError):
    """Required input is missing or malformed. No state was changed."""


class NotFoundError(PropertySalesError):
    """No workflow or record exists for the given identifier."""


class StageConflictError(PropertySalesError):
    """Operation is not valid for the workflow's current stage or suspension state."""


class StorageError(PropertySalesError):
    """The checkpoint store failed."""


class StorageTimeoutError(StorageError):
    """The checkpoint store was unreachable or too slow. Safe to retry."""


class AgentExecutionError(PropertySalesError):
    """A stage agent failed while executing its business logic."""


class ExternalToolError(AgentExecutionError):
    """A side-effecting capability (messaging, calendar, documents) failed."""

    def __init__(self, tool: str, message: str) -> None:
        super().__init__(f"{tool}: {message}")
        self.tool = tool
