"""Expansion of user-supplied local paths."""

from __future__ import annotations

import os

__all__ = ["expand"]


def expand(orig: str) -> str:
    """Expand ``~`` and ``~/...`` and return an absolute, normalised path.

    Paths of the form ``~user/...`` are not supported.
    """
    if orig == "":
        raise ValueError("empty path")
    home = os.path.expanduser("~")
    if home == "~":
        raise RuntimeError("cannot determine the home directory")

    path = orig
    if path.startswith("~"):
        if path == "~" or path.startswith("~/"):
            path = home + path[1:]
        else:
            raise ValueError(f'unexpandable path "{orig}"')
    return os.path.abspath(path)