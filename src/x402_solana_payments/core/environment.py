"""
Utilities for building the environment the settlement configuration is read from.

Only :func:`build_environment` and :func:`load_env_file` touch ``os.environ``.
The result is a frozen :class:`SettlementEnvironment` that
:class:`x402_solana_payments.core.config.SettlementConfig` consumes, so no
component ever reads ambient process state directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, MutableMapping, Optional

ENV_PREFIX = "X402_"


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _parse_env_file(path: Path) -> Dict[str, str]:
    values: Dict[str, str] = {}
    try:
        data = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return values

    for raw_line in data.splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = _strip_quotes(value.strip())
    return values


def load_env_file(
    path: str = ".env",
    *,
    environ: Optional[MutableMapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Load variables from ``path`` into ``environ`` without clobbering existing keys.

    Returns the merged mapping.
    """
    target: MutableMapping[str, str] = environ if environ is not None else os.environ
    for key, value in _parse_env_file(Path(path)).items():
        target.setdefault(key, value)
    return dict(target)


@dataclass(frozen=True)
class SettlementEnvironment:
    """A resolved, immutable snapshot of the settings used to configure the engine."""

    variables: Mapping[str, str]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.variables.get(key)
        if value is None or value == "":
            return default
        return value

    def settings(self) -> Dict[str, str]:
        """Return only the ``X402_*`` keys, which is all the engine looks at."""
        return {
            key: value
            for key, value in self.variables.items()
            if key.startswith(ENV_PREFIX)
        }


def build_environment(
    *,
    env_file: Optional[str] = ".env",
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> SettlementEnvironment:
    """
    Assemble a :class:`SettlementEnvironment` from layered sources.

    ``base`` defaults to :data:`os.environ`; values from ``env_file`` fill in
    keys ``base`` lacks (pass ``None`` to skip the file); ``overrides`` win.
    """
    merged: Dict[str, str] = dict(os.environ if base is None else base)

    if env_file is not None:
        for key, value in _parse_env_file(Path(env_file)).items():
            merged.setdefault(key, value)

    if overrides:
        merged.update(overrides)

    return SettlementEnvironment(variables=merged)
