"""Tests for custom exception hierarchy in cwdeploy.lib.errors."""

import pytest

from cwdeploy.lib.errors import (
    ChainError,
    ChainRejectedError,
    ChainTimeoutError,
    ChainUnavailableError,
    ConfigError,
    CorruptStateError,
    CwDeployError,
    DependencyMissingError,
    DeploymentError,
    FileNotFoundError,
    FlowAssertionError,
    StateConflictError,
    StateError,
    StateNotFoundError,
    StepExecutionError,
    UnexpectedResponseError,
)


class TestCwDeployError:
    """Tests for base CwDeployError exception."""

    def test_cwdeploy_error_creates_with_message(self) -> None:
        """Test that CwDeployError can be created with a message."""
        error = CwDeployError("Test error message")
        assert str(error) == "Test error message"

    @pytest.mark.parametrize(
        "error",
        [
            ConfigError("field", "msg"),
            FileNotFoundError("deploy.yaml", "missing"),
            DeploymentError("preflight", "msg"),
            StateNotFoundError("state.json", "msg"),
            StateConflictError("module:a", "1", "2"),
            DependencyMissingError("step", "module:a"),
            ChainRejectedError("execute", "msg"),
            StepExecutionError("step", RuntimeError("boom")),
            UnexpectedResponseError("msg"),
            FlowAssertionError("red-bank", "msg"),
        ],
    )
    def test_all_errors_are_cwdeploy_errors(self, error: Exception) -> None:
        """Test that every cwdeploy error can be caught by the base class."""
        assert isinstance(error, CwDeployError)


class TestConfigError:
    """Tests for ConfigError exception."""

    def test_config_error_formats_message_with_field(self) -> None:
        """Test that ConfigError formats messages with field information."""
        error = ConfigError("chain.id", "Field 'id' is required")
        assert "chain.id" in str(error)
        assert error.field == "chain.id"
        assert error.message == "Field 'id' is required"


class TestFileNotFoundError:
    """Tests for FileNotFoundError exception."""

    def test_file_not_found_includes_path(self) -> None:
        """Test that the path and suggestion are both in the message."""
        error = FileNotFoundError("deploy.yaml", "Create it first")
        assert "deploy.yaml" in str(error)
        assert "Create it first" in str(error)

    def test_shadows_builtin_only_by_name(self) -> None:
        """Test that the cwdeploy error is not the builtin OSError subclass."""
        assert not isinstance(FileNotFoundError("p", "m"), OSError)


class TestStateErrors:
    """Tests for state related exceptions."""

    def test_state_not_found_and_corrupt_are_distinct(self) -> None:
        """Test that a first run can be told apart from a corrupt file."""
        missing = StateNotFoundError("s.json", "No state")
        corrupt = CorruptStateError("s.json", "Bad JSON")

        assert isinstance(missing, StateError)
        assert isinstance(corrupt, StateError)
        assert not isinstance(corrupt, StateNotFoundError)
        assert "s.json" in str(corrupt)

    def test_state_conflict_names_both_values(self) -> None:
        """Test that a write-once conflict reports existing and attempted values."""
        error = StateConflictError("address:oracle", "neutron1a", "neutron1b")

        assert error.key == "address:oracle"
        assert "neutron1a" in str(error)
        assert "neutron1b" in str(error)


class TestDependencyMissingError:
    """Tests for DependencyMissingError exception."""

    def test_names_step_and_key(self) -> None:
        """Test that the message names the step and the missing key."""
        error = DependencyMissingError("instantiate:oracle", "module:oracle")

        assert error.step_name == "instantiate:oracle"
        assert error.missing_key == "module:oracle"
        assert "module:oracle" in str(error)


class TestChainErrors:
    """Tests for chain failure classification."""

    @pytest.mark.parametrize(
        "error_class",
        [ChainRejectedError, ChainTimeoutError, ChainUnavailableError],
    )
    def test_chain_errors_share_base(self, error_class: type[ChainError]) -> None:
        """Test that all chain failures derive from ChainError."""
        error = error_class("execute", "msg")

        assert isinstance(error, ChainError)
        assert error.operation == "execute"
        assert "execute" in str(error)


class TestStepExecutionError:
    """Tests for StepExecutionError exception."""

    def test_preserves_cause(self) -> None:
        """Test that the underlying exception is kept for inspection."""
        cause = ChainRejectedError("execute", "unauthorized")
        error = StepExecutionError("owner:oracle:multisig", cause)

        assert error.cause is cause
        assert "owner:oracle:multisig" in str(error)
        assert "unauthorized" in str(error)

    def test_timeout_cause_is_ambiguous(self) -> None:
        """Test that only an unconfirmed broadcast is reported as ambiguous."""
        assert StepExecutionError("s", ChainTimeoutError("execute", "m")).ambiguous
        assert not StepExecutionError("s", ChainRejectedError("execute", "m")).ambiguous
        assert not StepExecutionError(
            "s", ChainUnavailableError("execute", "m")
        ).ambiguous
