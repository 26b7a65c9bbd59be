"""
expense_config -- single public entrypoint for application configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration.  Sits beside ``expense_kernel`` and below
    ``expense_services``.  The kernel MUST NEVER import from
    ``expense_config``; ``expense_services.bootstrap`` translates the
    config into constructed collaborators.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - Source precedence: explicit path, then ``EXPENSE_CONFIG_PATH``, then
      the packaged ``sets/default.yaml``.  A fixed list of environment
      variables overrides individual keys.
    - Deterministic checksum over the merged source mapping.

Failure modes:
    - ``FileNotFoundError`` -- the selected YAML file does not exist.
    - ``ValueError`` -- unknown section/key or a malformed value.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from expense_config.loader import apply_env_overrides, load_yaml_file, parse_config
from expense_config.schema import ExpenseAppConfig

_logger = logging.getLogger("expense_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "EXPENSE_CONFIG_PATH"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ExpenseAppConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Explicit YAML file.  Overrides ``EXPENSE_CONFIG_PATH``.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        A frozen ``ExpenseAppConfig``.  An ``expense_config_loaded`` log
        entry with the source path and checksum is emitted on every call.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE)

    raw = load_yaml_file(path)
    merged = apply_env_overrides(raw, env)
    config = parse_config(merged)

    _logger.info(
        "expense_config_loaded",
        extra={
            "config_path": str(path),
            "checksum": config.checksum,
            "receipts_enabled": config.receipts.enabled,
            "notifications_enabled": config.notifications.enabled,
        },
    )
    return config


__all__ = ["ExpenseAppConfig", "get_active_config"]
