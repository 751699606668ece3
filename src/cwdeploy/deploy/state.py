"""Persisted progress store for resumable deployments.

One JSON file per environment key (chain id + deployment label) records the
module ids, contract addresses and completed actions of a deployment. Files
are written atomically and with sorted keys so operators can diff them.
"""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from cwdeploy.lib.errors import CorruptStateError, DeploymentError, StateNotFoundError
from cwdeploy.lib.logging_config import get_logger
from cwdeploy.models.state import STATE_VERSION, DeploymentState

logger = get_logger(__name__)


def state_key(chain_id: str, label: str) -> str:
    """Return the environment key for a chain and deployment label."""
    return f"{chain_id}-{label}"


def get_state_path(state_dir: Path, key: str) -> Path:
    """Return the state file path for an environment key."""
    return Path(state_dir) / f"{key}.json"


class ProgressStore:
    """File-backed store for one deployment's progress state.

    Args:
        state_dir: Directory holding state files
        key: Environment key, see ``state_key``
        chain_id: Chain the deployment targets; a state file recorded for a
            different chain is treated as corrupt
    """

    def __init__(self, state_dir: Path, key: str, chain_id: str | None = None) -> None:
        self.state_dir = Path(state_dir)
        self.key = key
        self.chain_id = chain_id

    @property
    def path(self) -> Path:
        """Location of the state file."""
        return get_state_path(self.state_dir, self.key)

    def load(self) -> DeploymentState:
        """Load recorded state.

        Raises:
            StateNotFoundError: No state recorded for the key yet
            CorruptStateError: The file cannot be read or parsed
        """
        if not self.path.exists():
            raise StateNotFoundError(str(self.path), "No deployment state recorded")

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CorruptStateError(
                str(self.path), f"Failed to read deployment state: {exc}"
            ) from exc

        try:
            state = DeploymentState.model_validate_json(content)
        except ValidationError as exc:
            raise CorruptStateError(
                str(self.path), f"Invalid deployment state format: {exc}"
            ) from exc

        if self.chain_id and state.chain_id and state.chain_id != self.chain_id:
            raise CorruptStateError(
                str(self.path),
                f"State was recorded for chain '{state.chain_id}', "
                f"not '{self.chain_id}'",
            )
        return state

    def load_or_create(self, label: str | None = None) -> DeploymentState:
        """Load recorded state, starting empty on the first run for the key."""
        try:
            state = self.load()
        except StateNotFoundError:
            logger.info(f"No state at {self.path}, starting a fresh deployment")
            state = DeploymentState(
                version=STATE_VERSION, chain_id=self.chain_id, label=label
            )
        return state

    def flush(self, state: DeploymentState) -> None:
        """Atomically persist state to disk."""
        state.updated_at = datetime.now(timezone.utc)
        payload = json.dumps(state.model_dump(mode="json"), indent=2, sort_keys=True)

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.state_dir, prefix=f".{self.key}-", suffix=".tmp"
            )
        except OSError as exc:
            raise DeploymentError(
                operation="state",
                message=f"Failed to write deployment state to {self.path}: {exc}",
            ) from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload + "\n")
            os.replace(temp_path, self.path)
        except OSError as exc:
            Path(temp_path).unlink(missing_ok=True)
            raise DeploymentError(
                operation="state",
                message=f"Failed to write deployment state to {self.path}: {exc}",
            ) from exc

        logger.debug(f"Flushed deployment state to {self.path}")

    @contextmanager
    def session(
        self, label: str | None = None
    ) -> Generator[DeploymentState, None, None]:
        """Open the state for a run and flush it on every exit path.

        Loading happens before the guarded block, so a corrupt state file is
        never overwritten.
        """
        state = self.load_or_create(label=label)
        try:
            yield state
        finally:
            self.flush(state)


def export_addresses(state: DeploymentState, output_path: Path) -> None:
    """Write recorded module ids and contract addresses to a standalone file."""
    payload = {
        "chain_id": state.chain_id,
        "label": state.label,
        "code_ids": dict(state.module_ids),
        "addresses": dict(state.contract_addresses),
    }
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )
    except OSError as exc:
        raise DeploymentError(
            operation="export",
            message=f"Failed to write addresses to {output_path}: {exc}",
        ) from exc
