"""Custom exception hierarchy for cwdeploy configuration and deployments."""


class CwDeployError(Exception):
    """Base exception for all cwdeploy errors.

    All cwdeploy-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI.
    """

    pass


class ConfigError(CwDeployError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class FileNotFoundError(CwDeployError):
    """Exception raised when a configuration or artifact file is not found.

    Attributes:
        path: Path to the file that was not found
        message: Human-readable error message
    """

    def __init__(self, path: str, message: str) -> None:
        """Initialize FileNotFoundError with path and message.

        Args:
            path: Path to the file that was not found
            message: Descriptive error message, optionally with suggestions
        """
        self.path = path
        self.message = message
        super().__init__(f"File not found: {path}\n{message}")


class DeploymentError(CwDeployError):
    """Exception raised when a deployment operation cannot proceed.

    Attributes:
        operation: Name of the operation that failed (e.g. "preflight")
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Create a deployment error for an operation."""
        self.operation = operation
        self.message = message
        super().__init__(f"Deployment {operation} failed: {message}")


class StateError(CwDeployError):
    """Base exception for persisted progress state failures.

    Attributes:
        path: Location of the state file involved
        message: Human-readable error message
    """

    def __init__(self, path: str, message: str) -> None:
        """Create a state error for a state file path."""
        self.path = path
        self.message = message
        super().__init__(f"{message} ({path})")


class StateNotFoundError(StateError):
    """No state has been recorded for the key yet (first run)."""


class CorruptStateError(StateError):
    """Persisted state exists but cannot be read or parsed.

    This is fatal: the file is never overwritten automatically, an operator
    has to inspect and repair or move it.
    """


class StateConflictError(CwDeployError):
    """Raised when a write-once state entry would be overwritten.

    Attributes:
        key: Store key that already holds a value
        existing: Value already recorded
        attempted: Value that was about to be written
    """

    def __init__(self, key: str, existing: str, attempted: str) -> None:
        """Create a conflict error for a write-once key."""
        self.key = key
        self.existing = existing
        self.attempted = attempted
        super().__init__(
            f"'{key}' is already recorded as '{existing}', refusing to "
            f"overwrite it with '{attempted}'"
        )


class DependencyMissingError(CwDeployError):
    """A step was invoked before one of its required store keys was recorded.

    Either the plan is authored in the wrong order or a prerequisite step has
    not completed yet. Never retried automatically.

    Attributes:
        step_name: Name of the step that could not run
        missing_key: First required store key that is absent
    """

    def __init__(self, step_name: str, missing_key: str) -> None:
        """Create a dependency error naming the missing key."""
        self.step_name = step_name
        self.missing_key = missing_key
        super().__init__(
            f"Step '{step_name}' requires '{missing_key}' which has not been "
            f"recorded yet"
        )


class ChainError(CwDeployError):
    """Exception raised by chain adapters for transport or chain failures.

    Attributes:
        operation: Adapter operation that failed (upload, instantiate, ...)
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Create a chain error for an adapter operation."""
        self.operation = operation
        self.message = message
        super().__init__(f"Chain {operation} failed: {message}")


class ChainRejectedError(ChainError):
    """The chain (or its simulation) rejected the transaction."""


class ChainTimeoutError(ChainError):
    """The transaction was broadcast but its inclusion was never observed.

    The outcome is unknown: it may or may not have landed on chain.
    """


class ChainUnavailableError(ChainError):
    """The node or client could not be reached; nothing was broadcast."""


class StepExecutionError(CwDeployError):
    """A step's chain interaction failed or returned an unexpected result.

    Attributes:
        step_name: Name of the step that failed
        cause: The underlying exception, preserved for inspection
    """

    def __init__(self, step_name: str, cause: BaseException) -> None:
        """Create a step failure wrapping its cause."""
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"Step '{step_name}' failed: {cause}")

    @property
    def ambiguous(self) -> bool:
        """Whether the failed transaction may still have landed on chain."""
        return isinstance(self.cause, ChainTimeoutError)


class UnexpectedResponseError(CwDeployError):
    """A chain call succeeded but its response has an unexpected shape."""

    def __init__(self, message: str) -> None:
        """Create an unexpected response error."""
        self.message = message
        super().__init__(message)


class FlowAssertionError(CwDeployError):
    """A validation flow observed on-chain state that differs from expectations.

    Attributes:
        flow: Name of the flow that failed
        message: Description of the mismatch
    """

    def __init__(self, flow: str, message: str) -> None:
        """Create a flow assertion error."""
        self.flow = flow
        self.message = message
        super().__init__(f"Flow '{flow}' failed: {message}")
