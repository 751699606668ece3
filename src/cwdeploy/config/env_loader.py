"""Environment variable helpers for configuration files.

Supports ``${VAR}`` and ``${VAR:-default}`` references inside YAML text and
``.env`` files loaded with python-dotenv.
"""

import os
import re
from pathlib import Path

from dotenv import load_dotenv

from cwdeploy.lib.errors import ConfigError

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def substitute_env_vars(text: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in text.

    Args:
        text: Raw text, typically a YAML document

    Returns:
        Text with every reference replaced

    Raises:
        ConfigError: If a referenced variable is unset and has no default
    """

    def replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = os.environ.get(name)
        if value is not None:
            return value
        if default is not None:
            return default
        raise ConfigError(
            name,
            f"Environment variable '{name}' is not set. Export it or add it "
            f"to your .env file.",
        )

    return ENV_VAR_PATTERN.sub(replace, text)


def load_dotenv_files(directory: str | Path) -> bool:
    """Load ``.env`` from a directory into ``os.environ``.

    Variables already set in the environment win.

    Returns:
        True if a file was loaded
    """
    env_path = Path(directory) / ".env"
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)
