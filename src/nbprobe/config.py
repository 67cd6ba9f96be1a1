"""Settings (.nbprobe/config.yaml plus NBPROBE_* environment overrides)."""

import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from nbprobe.kernel.engine import ExecutionOptions


@dataclass
class Settings:
    """Execution budgets and cache behavior. Times are in seconds."""
    run_timeout: Optional[float] = 10.0
    queue_timeout: Optional[float] = None
    warn_after: float = 2.0
    queue_warn_after: float = 2.0
    interrupt_on_timeout: bool = True
    action_timeout: Optional[float] = None
    refresh_debounce: float = 0.3
    refresh_details: bool = True
    kernel_name: str = "python3"
    log_level: str = "warning"

    def execution_options(self, operation: Optional[str] = None) -> ExecutionOptions:
        """Default options for inspection queries."""
        return ExecutionOptions(
            timeout=self.run_timeout,
            queue_timeout=self.queue_timeout,
            warn_after=self.warn_after,
            queue_warn_after=self.queue_warn_after,
            operation=operation,
            interrupt_on_timeout=self.interrupt_on_timeout,
        )

    def action_options(self, operation: Optional[str] = None) -> ExecutionOptions:
        """Default options for user-triggered actions."""
        return ExecutionOptions(
            timeout=self.action_timeout,
            warn_after=self.warn_after,
            queue_warn_after=self.queue_warn_after,
            operation=operation,
            interrupt_on_timeout=self.interrupt_on_timeout,
        )


ENV_OVERRIDES = {
    "NBPROBE_RUN_TIMEOUT": ("run_timeout", float),
    "NBPROBE_LOG_LEVEL": ("log_level", str),
    "NBPROBE_KERNEL": ("kernel_name", str),
}


def _config_path(project_dir: str) -> Path:
    return Path(project_dir) / ".nbprobe" / "config.yaml"


def load_settings(project_dir: str = ".") -> Settings:
    """Load settings. Returns defaults on missing or corrupted files."""
    path = _config_path(project_dir)
    data: dict = {}
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            print(f"Warning: corrupted {path}, using defaults: {e}", file=sys.stderr)
            data = {}
        if not isinstance(data, dict):
            print(f"Warning: {path} is not a mapping, using defaults", file=sys.stderr)
            data = {}

    known = {f.name for f in fields(Settings)}
    settings = Settings(**{k: v for k, v in data.items() if k in known})

    for var, (attr, cast) in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            try:
                setattr(settings, attr, cast(value))
            except ValueError:
                print(f"Warning: ignoring invalid {var}={value!r}", file=sys.stderr)

    return settings
