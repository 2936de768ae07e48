"""
Layered environment used to configure the x402 negotiator.

Precedence, lowest first: ``os.environ`` (or an explicit ``base`` mapping),
then a ``.env`` file, then caller overrides. Keys already present in the base
are never replaced by the file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Mapping, MutableMapping, Optional, Tuple

ENV_PREFIX = "X402_"


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _iter_assignments(text: str) -> Iterator[Tuple[str, str]]:
    """Yield ``(key, value)`` pairs from dotenv text; comments and junk are skipped."""
    for line in map(str.strip, text.splitlines()):
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line[0] == "#":
            continue
        key, found, value = line.partition("=")
        if found and key.strip():
            yield key.strip(), _unquote(value.strip())


def _parse_env_file(path: Path) -> Dict[str, str]:
    if not path.is_file():
        return {}
    return dict(_iter_assignments(path.read_text(encoding="utf-8")))


def load_env_file(
    path: str = ".env",
    *,
    environ: Optional[MutableMapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Copy the assignments in ``path`` into ``environ`` (``os.environ`` by default).

    Variables that are already set keep their value. A snapshot of the merged
    mapping is returned.
    """
    target = os.environ if environ is None else environ
    for key, value in _parse_env_file(Path(path)).items():
        target.setdefault(key, value)
    return dict(target)


@dataclass(frozen=True)
class ClientEnvironment:
    variables: Mapping[str, str]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.variables.get(key, default)

    def scoped(self, prefix: str = ENV_PREFIX) -> Dict[str, str]:
        """Only the variables whose name starts with ``prefix``."""
        return {key: value for key, value in self.variables.items() if key.startswith(prefix)}


def build_environment(
    *,
    env_file: Optional[str] = ".env",
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> ClientEnvironment:
    """
    Resolve the variables one negotiator will be configured from.

    Pass ``env_file=None`` to skip the file and ``base={}`` to ignore the
    process environment.
    """
    layers = [dict(os.environ if base is None else base)]
    if env_file is not None:
        from_file = _parse_env_file(Path(env_file))
        layers.append({key: value for key, value in from_file.items() if key not in layers[0]})
    layers.append(dict(overrides or {}))

    merged: Dict[str, str] = {}
    for layer in layers:
        merged.update(layer)
    return ClientEnvironment(variables=merged)
