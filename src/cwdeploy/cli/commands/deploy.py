"""CLI commands for deploying the lending protocol contracts.

Implements the 'cwdeploy deploy' command group: running and resuming a
deployment, inspecting its plan and recorded progress, running validation
flows and exporting deployed addresses.
"""

from __future__ import annotations

import sys
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

import click

from cwdeploy.chain import BaseChainAdapter, create_adapter
from cwdeploy.config.loader import load_deployment_config
from cwdeploy.deploy.catalogue import (
    build_phases,
    build_plan,
    check_deployer_balance,
)
from cwdeploy.deploy.flows import FlowValidator
from cwdeploy.deploy.pipeline import PipelineDriver, validate_plan
from cwdeploy.deploy.state import ProgressStore, export_addresses, state_key
from cwdeploy.deploy.steps import StepOutcome, StepReport
from cwdeploy.lib.errors import (
    ConfigError,
    CwDeployError,
    DeploymentError,
    FileNotFoundError,
    StateNotFoundError,
    StepExecutionError,
)
from cwdeploy.lib.logging_config import get_logger, setup_logging
from cwdeploy.models.config import DeploymentConfig

logger = get_logger(__name__)

_OUTCOME_COLORS = {
    StepOutcome.EXECUTED: "green",
    StepOutcome.RECONCILED: "cyan",
    StepOutcome.SKIPPED: "bright_black",
}


@contextmanager
def handle_deployment_errors() -> Generator[None, None, None]:
    """Context manager for consistent error handling in deployment commands.

    Exit codes:
        2: Configuration error
        3: Deployment/execution error
    """
    try:
        yield
    except (ConfigError, FileNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except StepExecutionError as e:
        logger.error(f"Step failed: {e}")
        click.secho(f"Error: step '{e.step_name}' failed", fg="red", err=True)
        click.echo(f"  {e.cause}", err=True)
        if e.ambiguous:
            click.echo(
                "  The transaction may still land. Re-running checks chain state "
                "where possible before re-sending.",
                err=True,
            )
        sys.exit(3)
    except CwDeployError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)


def _open_store(config: DeploymentConfig) -> ProgressStore:
    return ProgressStore(
        config.state_dir,
        state_key(config.chain.id, config.label),
        chain_id=config.chain.id,
    )


def _echo_step(report: StepReport) -> None:
    line = f"  {report.outcome.value:<10} {report.name}"
    if report.detail:
        line += f"  ({report.detail})"
    if report.gas_used:
        line += f"  gas={report.gas_used}"
    click.secho(line, fg=_OUTCOME_COLORS.get(report.outcome))


def _run_flows(
    config: DeploymentConfig,
    store: ProgressStore,
    chain: BaseChainAdapter,
    quiet: bool,
) -> int:
    def echo_check(flow: str, check: str) -> None:
        click.secho(f"  passed     {flow}:{check}", fg="green")

    validator = FlowValidator(
        config, store.load(), chain, on_check=None if quiet else echo_check
    )
    return len(validator.run())


def _common_options(func):  # type: ignore[no-untyped-def]
    func = click.option(
        "--quiet", "-q", is_flag=True, help="Suppress progress output"
    )(func)
    func = click.option(
        "--verbose", "-v", is_flag=True, help="Enable verbose debug logging"
    )(func)
    func = click.argument(
        "deploy_config",
        type=click.Path(exists=True),
        default="deploy.yaml",
        required=False,
    )(func)
    return func


@click.group(name="deploy", invoke_without_command=True)
@click.pass_context
def deploy(ctx: click.Context) -> None:
    """Deploy and wire the protocol contracts.

    Subcommands:

        run     Run or resume a deployment
        plan    Show the deployment plan and what is already done
        status  Show recorded deployment progress
        flows   Run validation flows against a deployment
        export  Write deployed addresses to a JSON file

    Example:

        cwdeploy deploy run deploy.yaml

        cwdeploy deploy status deploy.yaml
    """
    ctx.ensure_object(dict)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@deploy.command()
@_common_options
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Attempts per step while the node is unreachable",
)
@click.option(
    "--skip-balance-check", is_flag=True, help="Do not check the deployer balance"
)
@click.option("--skip-flows", is_flag=True, help="Do not run validation flows")
def run(
    deploy_config: str,
    verbose: bool,
    quiet: bool,
    max_attempts: int,
    skip_balance_check: bool,
    skip_flows: bool,
) -> None:
    """Run or resume a deployment.

    DEPLOY_CONFIG is the path to the deployment YAML file. Steps already
    recorded in the state file are skipped, so re-running after a failure
    continues from the first incomplete step.
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_deployment_config(deploy_config)
        chain = create_adapter(config)
        store = _open_store(config)

        if not skip_balance_check:
            check_deployer_balance(config, chain)

        setup, handover = build_phases(config)
        problems = validate_plan([*setup, *handover])
        if problems:
            raise ConfigError(field="plan", message="\n  ".join(problems))
        if not quiet:
            click.echo(
                f"Deploying to {config.chain.id} as '{config.label}' "
                f"({len(setup) + len(handover)} steps, state: {store.path})"
            )

        driver = PipelineDriver(
            store,
            chain,
            config,
            on_step=None if quiet else _echo_step,
            max_attempts=max_attempts,
        )
        results = [driver.run(setup)]
        results[0].raise_for_error()

        # Flows run before ownership moves to the multisig.
        if config.run_tests and not skip_flows:
            if not quiet:
                click.echo()
                click.secho("Validation Flows", bold=True)
            passed = _run_flows(config, store, chain, quiet)
            if not quiet:
                click.secho(f"All {passed} checks passed", fg="green")

        if handover:
            if not quiet:
                click.echo()
                click.secho("Ownership Hand-over", bold=True)
            results.append(driver.run(handover))
            results[-1].raise_for_error()

        if not quiet:
            click.echo()
            click.secho("Deployment Complete!", fg="green", bold=True)
            click.echo(f"  Executed:  {sum(len(r.executed) for r in results)}")
            click.echo(f"  Skipped:   {sum(len(r.skipped) for r in results)}")
            click.echo(f"  Gas used:  {sum(r.gas_used for r in results)}")


@deploy.command()
@_common_options
def plan(deploy_config: str, verbose: bool, quiet: bool) -> None:
    """Show the deployment plan and which steps are already recorded."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_deployment_config(deploy_config)
        store = _open_store(config)
        state = store.load_or_create(label=config.label)
        steps = build_plan(config)

        problems = validate_plan(steps)
        if problems:
            raise ConfigError(field="plan", message="\n  ".join(problems))

        done = 0
        for index, step in enumerate(steps, start=1):
            if step.is_done(state):
                done += 1
                marker, color = "done", "bright_black"
            elif step.name in state.pending_actions:
                marker, color = "unknown", "yellow"
            else:
                marker, color = "todo", None
            if not quiet:
                click.secho(f"{index:>3}. [{marker:<7}] {step.name}", fg=color)

        click.echo(f"{done}/{len(steps)} steps recorded")


@deploy.command()
@_common_options
def status(deploy_config: str, verbose: bool, quiet: bool) -> None:
    """Show recorded progress for a deployment."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_deployment_config(deploy_config)
        store = _open_store(config)
        try:
            state = store.load()
        except StateNotFoundError as e:
            raise DeploymentError(
                operation="status",
                message="No deployment state found. Run `cwdeploy deploy run` first.",
            ) from e

        if quiet:
            click.echo(f"{len(state.completed_actions)} actions completed")
            return

        click.echo()
        click.secho("Deployment Status", bold=True)
        click.echo(f"  Chain:     {state.chain_id}")
        click.echo(f"  Label:     {state.label}")
        click.echo(f"  State:     {store.path}")
        if state.updated_at:
            click.echo(f"  Updated:   {state.updated_at.isoformat()}")

        click.echo()
        click.secho("Code ids", bold=True)
        for name, module_id in sorted(state.module_ids.items()):
            click.echo(f"  {name:<20} {module_id}")

        click.echo()
        click.secho("Contracts", bold=True)
        for name, address in sorted(state.contract_addresses.items()):
            click.echo(f"  {name:<20} {address}")

        click.echo()
        click.echo(f"Completed actions: {len(state.completed_actions)}")
        for name in sorted(state.pending_actions):
            click.secho(f"  unknown outcome: {name}", fg="yellow")


@deploy.command()
@_common_options
def flows(deploy_config: str, verbose: bool, quiet: bool) -> None:
    """Run validation flows against a recorded deployment."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_deployment_config(deploy_config)
        if config.test_actions is None:
            raise ConfigError(
                field="test_actions",
                message="Validation flows need a 'test_actions' section.",
            )
        chain = create_adapter(config)
        passed = _run_flows(config, _open_store(config), chain, quiet)
        click.secho(f"All {passed} checks passed", fg="green")


@deploy.command()
@_common_options
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file (default: <state_dir>/<chain>-<label>-addresses.json)",
)
def export(deploy_config: str, verbose: bool, quiet: bool, output: Path | None) -> None:
    """Write deployed code ids and addresses to a JSON file."""
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config = load_deployment_config(deploy_config)
        store = _open_store(config)
        state = store.load()
        output_path = output or Path(config.state_dir) / f"{store.key}-addresses.json"
        export_addresses(state, output_path)
        click.echo(str(output_path))
