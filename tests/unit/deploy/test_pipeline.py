"""Unit tests for the pipeline driver.

Tests cover:
- Idempotent resume and fail-and-resume equivalence
- Precondition enforcement and durability on failure
- Per-item resumability
- Unknown-outcome markers and query-before-resend reconciliation
- Retry policy for unreachable nodes
- Static plan validation
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from cwdeploy.deploy.pipeline import (
    PipelineDriver,
    PipelineResult,
    PipelineStatus,
    validate_plan,
)
from cwdeploy.deploy.state import ProgressStore
from cwdeploy.deploy.steps import (
    ExecuteStep,
    InstantiateStep,
    Step,
    StepOutcome,
    UploadStep,
)
from cwdeploy.lib.errors import (
    ChainRejectedError,
    ChainTimeoutError,
    ChainUnavailableError,
    CorruptStateError,
    DependencyMissingError,
    StepExecutionError,
)
from cwdeploy.models.config import DeploymentConfig
from cwdeploy.models.state import DeploymentState, address_key

DENOMS = ["untrn", "uatom", "uusdc", "uosmo", "utia"]


def _artifact(tmp_path: Path, name: str) -> Path:
    artifacts = tmp_path / "artifacts"
    artifacts.mkdir(exist_ok=True)
    path = artifacts / f"{name}.wasm"
    path.write_bytes(f"wasm-{name}".encode())
    return path


def _scenario_plan(tmp_path: Path, confirm: Any = None) -> list[Step]:
    return [
        UploadStep("a", _artifact(tmp_path, "a")),
        InstantiateStep("a", "a", lambda ctx: {"owner": ctx.chain.sender}),
        UploadStep("b", _artifact(tmp_path, "b")),
        InstantiateStep(
            "b", "b", lambda ctx: {"a": ctx.address("a")}, references=["a"]
        ),
        ExecuteStep(
            "b:configure", "b", lambda ctx: {"update_config": {}}, confirm=confirm
        ),
    ]


def _item_plan(tmp_path: Path) -> list[Step]:
    plan: list[Step] = [
        UploadStep("oracle", _artifact(tmp_path, "oracle")),
        InstantiateStep("oracle", "oracle", lambda ctx: {}),
    ]
    for denom in DENOMS:
        plan.append(
            ExecuteStep(
                f"oracle:price-source:{denom}",
                "oracle",
                lambda ctx, denom=denom: {"set_price_source": {"denom": denom}},
            )
        )
    return plan


def _store(root: Path) -> ProgressStore:
    return ProgressStore(root / "state", "pion-1-deployer-owner", chain_id="pion-1")


def _snapshot(state: DeploymentState) -> tuple[dict, dict, set]:
    return (
        dict(state.module_ids),
        dict(state.contract_addresses),
        set(state.completed_actions),
    )


class TestPipelineRun:
    """Tests for complete and resumed runs."""

    def test_run_completes_scenario(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """A fresh run executes every step and records all postconditions."""
        store = _store(tmp_path)
        driver = PipelineDriver(store, fake_chain, deployment_config)

        result = driver.run(_scenario_plan(tmp_path))

        assert result.status == PipelineStatus.COMPLETED
        assert driver.status == PipelineStatus.COMPLETED
        assert result.ok
        assert fake_chain.operations() == [
            "upload",
            "instantiate",
            "upload",
            "instantiate",
            "execute",
        ]
        state = store.load()
        assert state.module_ids == {"a": "1", "b": "2"}
        assert state.contract_addresses == {
            "a": "neutron1deployer-owner-a",
            "b": "neutron1deployer-owner-b",
        }
        assert state.completed_actions == {"b:configure"}
        assert state.pending_actions == set()
        assert result.gas_used == 100

    def test_instantiate_message_uses_recorded_address(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """Messages embed addresses recorded by earlier steps."""
        PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )

        init_msg = fake_chain.contracts["neutron1deployer-owner-b"]["init_msg"]
        assert init_msg == {"a": "neutron1deployer-owner-a"}

    def test_second_run_makes_no_chain_calls(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """Re-running a completed plan skips every step."""
        plan = _scenario_plan(tmp_path)
        PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(plan)
        calls_after_first = fake_chain.tx_count
        first_state = _store(tmp_path).load()

        driver = PipelineDriver(_store(tmp_path), fake_chain, deployment_config)
        result = driver.run(plan)

        assert result.status == PipelineStatus.COMPLETED
        assert fake_chain.tx_count == calls_after_first
        assert result.skipped == [step.name for step in plan]
        assert result.executed == []
        assert _snapshot(_store(tmp_path).load()) == _snapshot(first_state)

    @pytest.mark.parametrize("fail_at", [1, 2, 3, 4, 5])
    def test_fail_and_resume_matches_uninterrupted_run(
        self,
        tmp_path: Path,
        make_chain: Any,
        deployment_config: DeploymentConfig,
        fail_at: int,
    ) -> None:
        """Failing at any step and resuming ends in the same state."""
        reference_chain = make_chain()
        reference_root = tmp_path / "reference"
        reference_root.mkdir()
        PipelineDriver(_store(reference_root), reference_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )
        expected = _snapshot(_store(reference_root).load())

        chain = make_chain()
        chain.fail_at = {fail_at: ChainRejectedError("tx", "rejected")}
        first = PipelineDriver(_store(tmp_path), chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )
        second = PipelineDriver(_store(tmp_path), chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )

        assert first.status == PipelineStatus.FAILED
        assert second.status == PipelineStatus.COMPLETED
        assert _snapshot(_store(tmp_path).load()) == expected
        assert chain.tx_count == reference_chain.tx_count + 1

    def test_concrete_scenario_resumes_at_failed_instantiate(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """Instantiating B fails, the rerun only instantiates and configures B."""
        fake_chain.fail_at = {4: ChainRejectedError("instantiate", "out of gas")}

        first = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )
        assert first.status == PipelineStatus.FAILED
        assert first.failed_step == "instantiate:b"

        second = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )

        assert second.skipped == ["upload:a", "instantiate:a", "upload:b"]
        assert second.executed == ["instantiate:b", "b:configure"]
        assert fake_chain.operations()[4:] == ["instantiate", "execute"]


class TestPipelineFailures:
    """Tests for failure handling and durability."""

    def test_failure_persists_exactly_completed_steps(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """The state file holds the postconditions of steps before the failure."""
        fake_chain.fail_at = {4: ChainRejectedError("instantiate", "rejected")}

        result = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )

        assert isinstance(result.error, StepExecutionError)
        assert isinstance(result.error.cause, ChainRejectedError)
        state = _store(tmp_path).load()
        assert state.module_ids == {"a": "1", "b": "2"}
        assert state.contract_addresses == {"a": "neutron1deployer-owner-a"}
        assert state.completed_actions == set()
        assert state.pending_actions == set()

    def test_failure_stops_remaining_steps(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """No step after the failing one is attempted."""
        fake_chain.fail_at = {2: ChainRejectedError("instantiate", "rejected")}

        result = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )

        assert fake_chain.operations() == ["upload", "instantiate"]
        assert [r.name for r in result.reports] == ["upload:a"]

    def test_missing_dependency_makes_no_chain_calls(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """A step whose requirements are absent fails before touching the chain."""
        plan: list[Step] = [
            InstantiateStep("b", "b", lambda ctx: {}, references=["a"]),
        ]

        driver = PipelineDriver(_store(tmp_path), fake_chain, deployment_config)
        result = driver.run(plan)

        assert result.status == PipelineStatus.FAILED
        assert isinstance(result.error, DependencyMissingError)
        assert result.error.missing_key == "module:b"
        assert fake_chain.calls == []

    def test_raise_for_error_reraises(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """raise_for_error surfaces the stopping error."""
        plan: list[Step] = [InstantiateStep("a", "a", lambda ctx: {})]
        driver = PipelineDriver(_store(tmp_path), fake_chain, deployment_config)
        result = driver.run(plan)

        with pytest.raises(DependencyMissingError):
            result.raise_for_error()

    def test_raise_for_error_noop_on_success(self) -> None:
        """A completed result does not raise."""
        PipelineResult(status=PipelineStatus.COMPLETED).raise_for_error()

    def test_interrupt_flushes_state(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """KeyboardInterrupt propagates after progress is flushed."""
        fake_chain.fail_at = {3: KeyboardInterrupt()}
        driver = PipelineDriver(_store(tmp_path), fake_chain, deployment_config)

        with pytest.raises(KeyboardInterrupt):
            driver.run(_scenario_plan(tmp_path))

        assert driver.status == PipelineStatus.FAILED
        state = _store(tmp_path).load()
        assert state.module_ids == {"a": "1"}
        assert state.contract_addresses == {"a": "neutron1deployer-owner-a"}
        assert state.pending_actions == {"upload:b"}

    def test_corrupt_state_is_not_overwritten(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """A corrupt state file aborts the run and stays untouched."""
        store = _store(tmp_path)
        store.state_dir.mkdir(parents=True)
        store.path.write_text("{not json")

        with pytest.raises(CorruptStateError):
            PipelineDriver(store, fake_chain, deployment_config).run(
                _scenario_plan(tmp_path)
            )

        assert store.path.read_text() == "{not json"
        assert fake_chain.calls == []


class TestPerItemResume:
    """Tests for per-item configuration loops."""

    def test_resume_continues_from_failed_item(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """Items before the failure are not re-sent."""
        # tx 1 upload, tx 2 instantiate, tx 3-7 the five items
        fake_chain.fail_at = {5: ChainRejectedError("execute", "rejected")}

        first = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _item_plan(tmp_path)
        )
        second = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _item_plan(tmp_path)
        )

        assert first.failed_step == "oracle:price-source:uusdc"
        assert second.executed == [f"oracle:price-source:{d}" for d in DENOMS[2:]]
        sent = [msg["set_price_source"]["denom"] for _, msg in fake_chain.executed]
        assert sent == DENOMS
        state = _store(tmp_path).load()
        assert state.completed_actions == {f"oracle:price-source:{d}" for d in DENOMS}


class TestUnknownOutcome:
    """Tests for timed-out transactions."""

    def test_timeout_leaves_pending_marker(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """A timed-out step is recorded as having an unknown outcome."""
        fake_chain.fail_at = {5: ChainTimeoutError("execute", "not included")}
        fake_chain.land_before_fail = {5}

        result = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )

        assert isinstance(result.error, StepExecutionError)
        assert result.error.ambiguous
        state = _store(tmp_path).load()
        assert state.pending_actions == {"b:configure"}
        assert "b:configure" not in state.completed_actions

    def test_confirm_reconciles_without_resending(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """A confirmation query finding the effect records it without another tx."""
        fake_chain.fail_at = {5: ChainTimeoutError("execute", "not included")}
        fake_chain.land_before_fail = {5}
        fake_chain.query_handler = lambda address, msg: {"configured": True}

        def confirm(ctx: Any) -> bool:
            response = ctx.chain.query_smart(ctx.address("b"), {"config": {}})
            return bool(response and response.get("configured"))

        PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path, confirm=confirm)
        )
        calls_before = fake_chain.tx_count

        result = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path, confirm=confirm)
        )

        assert result.status == PipelineStatus.COMPLETED
        assert result.reports[-1].outcome == StepOutcome.RECONCILED
        assert fake_chain.tx_count == calls_before
        state = _store(tmp_path).load()
        assert "b:configure" in state.completed_actions
        assert state.pending_actions == set()

    def test_without_confirm_step_is_resent(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """Without a confirmation query the step is sent again on resume."""
        fake_chain.fail_at = {5: ChainTimeoutError("execute", "not included")}
        fake_chain.land_before_fail = {5}

        PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )
        result = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )

        assert result.reports[-1].outcome == StepOutcome.EXECUTED
        assert len(fake_chain.executed) == 2

    def test_confirm_denial_resends(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """A confirmation query that finds nothing leads to a normal re-send."""
        fake_chain.fail_at = {5: ChainTimeoutError("execute", "not included")}

        PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path, confirm=lambda ctx: False)
        )
        result = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path, confirm=lambda ctx: False)
        )

        assert result.reports[-1].outcome == StepOutcome.EXECUTED
        assert len(fake_chain.executed) == 1


class TestRetryPolicy:
    """Tests for max_attempts."""

    def test_unreachable_node_is_retried(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """ChainUnavailableError is retried up to max_attempts."""
        fake_chain.fail_at = {1: ChainUnavailableError("upload", "connection refused")}
        driver = PipelineDriver(
            _store(tmp_path), fake_chain, deployment_config, max_attempts=2
        )

        with patch("cwdeploy.deploy.pipeline.time.sleep") as mock_sleep:
            result = driver.run(_scenario_plan(tmp_path))

        assert result.status == PipelineStatus.COMPLETED
        assert fake_chain.operations()[:2] == ["upload", "upload"]
        mock_sleep.assert_called_once()

    def test_unreachable_node_fails_without_retries(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """With the default single attempt the run fails."""
        fake_chain.fail_at = {1: ChainUnavailableError("upload", "connection refused")}

        result = PipelineDriver(_store(tmp_path), fake_chain, deployment_config).run(
            _scenario_plan(tmp_path)
        )

        assert result.status == PipelineStatus.FAILED
        assert fake_chain.tx_count == 1

    def test_rejected_transaction_is_never_retried(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """Rejections fail immediately regardless of max_attempts."""
        fake_chain.fail_at = {1: ChainRejectedError("upload", "invalid wasm")}
        driver = PipelineDriver(
            _store(tmp_path), fake_chain, deployment_config, max_attempts=3
        )

        with patch("cwdeploy.deploy.pipeline.time.sleep") as mock_sleep:
            result = driver.run(_scenario_plan(tmp_path))

        assert result.status == PipelineStatus.FAILED
        assert fake_chain.tx_count == 1
        mock_sleep.assert_not_called()

    def test_invalid_max_attempts(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """max_attempts below one is rejected."""
        with pytest.raises(ValueError):
            PipelineDriver(
                _store(tmp_path), fake_chain, deployment_config, max_attempts=0
            )


class TestProgressCallback:
    """Tests for the on_step callback."""

    def test_callback_receives_every_report(
        self, tmp_path: Path, fake_chain: Any, deployment_config: DeploymentConfig
    ) -> None:
        """on_step is called once per finished step, in order."""
        reports: list[Any] = []
        driver = PipelineDriver(
            _store(tmp_path), fake_chain, deployment_config, on_step=reports.append
        )

        driver.run(_scenario_plan(tmp_path))

        assert [r.name for r in reports] == [
            "upload:a",
            "instantiate:a",
            "upload:b",
            "instantiate:b",
            "b:configure",
        ]
        assert reports[-1].tx_hash == "TX0005"


class TestValidatePlan:
    """Tests for static plan validation."""

    def test_well_ordered_plan(self, tmp_path: Path) -> None:
        """The scenario plan has no problems."""
        assert validate_plan(_scenario_plan(tmp_path)) == []

    def test_out_of_order_plan(self, tmp_path: Path) -> None:
        """Requirements produced only by later steps are reported."""
        plan = list(reversed(_scenario_plan(tmp_path)))

        problems = validate_plan(plan)

        assert any("b:configure" in p and "address:b" in p for p in problems)

    def test_duplicate_names(self, tmp_path: Path) -> None:
        """Duplicate step names are reported."""
        artifact = _artifact(tmp_path, "a")
        plan: list[Step] = [UploadStep("a", artifact), UploadStep("a", artifact)]

        assert validate_plan(plan) == ["Duplicate step name 'upload:a'"]

    def test_requirements_satisfied_by_state(self) -> None:
        """Keys already recorded satisfy requirements."""
        state = DeploymentState()
        state.set_module_id("b", "7")
        state.set_address("a", "neutron1a")
        plan: list[Step] = [
            InstantiateStep("b", "b", lambda ctx: {}, references=["a"]),
        ]

        assert validate_plan(plan) != []
        assert validate_plan(plan, state) == []
        assert plan[0].requires[1] == address_key("a")
