"""Parameter files: YAML key/value settings, OpenCV-style headers accepted."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import numpy as np
import yaml


class _ParameterLoader(yaml.SafeLoader):
    """Safe YAML loader that also understands ``!!opencv-matrix`` nodes."""


def _construct_matrix(loader: yaml.SafeLoader, node: yaml.Node) -> np.ndarray:
    spec = loader.construct_mapping(node, deep=True)
    try:
        rows, cols, data = int(spec["rows"]), int(spec["cols"]), spec["data"]
    except KeyError as exc:
        raise ValueError(f"matrix node is missing {exc.args[0]!r}") from None
    return np.asarray(data, dtype=float).reshape(rows, cols)


_ParameterLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_matrix)


class Config:
    """Read-only collection of named parameters."""

    def __init__(self, values: Mapping[str, Any]):
        if not isinstance(values, Mapping):
            raise TypeError("configuration values must be a mapping")
        self._values = dict(values)

    @classmethod
    def load(cls, filename) -> "Config":
        """Load parameters from a YAML file."""
        path = Path(filename)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise FileNotFoundError(f"parameter file {filename} does not exist.") from None
        lines = text.splitlines()
        if lines and lines[0].startswith("%YAML"):
            lines = lines[1:]
        data = yaml.load("\n".join(lines), Loader=_ParameterLoader)
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise ValueError(f"parameter file {filename} does not hold a mapping")
        return cls(data)

    def get(self, key: str, cast: Callable[[Any], Any] | None = None) -> Any:
        """Return the value stored under ``key``, converted by ``cast`` if given."""
        try:
            value = self._values[key]
        except KeyError:
            raise KeyError(key) from None
        return value if cast is None else cast(value)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __repr__(self) -> str:
        return f"Config({self._values!r})"