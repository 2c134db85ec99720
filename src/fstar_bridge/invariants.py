"""Invariant markers."""

from __future__ import annotations

from typing import NoReturn

from fstar_bridge.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The env payload is attached to the raised exception and rendered into
    its message; it is not otherwise evaluated.
    """
    detail = ", ".join(f"{key}={env[key]!r}" for key in sorted(env))
    message = reason or "never() marker reached"
    if detail:
        message = f"{message} ({detail})"
    raise NeverThrown(message, env=env)
