"""
Error taxonomy for workflow execution.

CycleError is structural and aborts a run before any node executes.
NodeExecutionError and its subclasses are per-node: the scheduler records
them on the failing node and keeps running independent branches.
"""


class CycleError(Exception):
    """The workflow graph is not a DAG."""

    def __init__(self, message: str, cycle_path: list[str]):
        self.cycle_path = cycle_path
        super().__init__(message)


class NodeExecutionError(Exception):
    """Base for errors raised while executing a single node."""

    def __init__(self, message: str, node_id: str | None = None):
        self.node_id = node_id
        super().__init__(message)


class ValidationError(NodeExecutionError):
    """A node's inputs are missing or malformed."""


class RemoteOperationError(NodeExecutionError):
    """A media or LLM backend failed, timed out, or returned nothing usable."""


class UploadError(Exception):
    """An uploaded file was rejected or could not be stored."""
