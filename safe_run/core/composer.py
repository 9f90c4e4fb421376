"""Environment composition.

The child process receives exactly one environment: the launcher's inherited
environment with the resolved instructions laid over it. Resolved keys win on
conflict; nothing is dropped or renamed.
"""

import os
from collections.abc import Mapping
from types import MappingProxyType


def snapshot_environment(environ: Mapping[str, str] | None = None) -> Mapping[str, str]:
    """Capture an immutable copy of the process environment.

    Taken once at startup so later changes to ``os.environ`` cannot leak into
    resolution or into the child.
    """
    source = os.environ if environ is None else environ
    return MappingProxyType(dict(source))


def compose_environment(
    inherited: Mapping[str, str],
    resolved: Mapping[str, str],
) -> dict[str, str]:
    """Overlay ``resolved`` onto a copy of ``inherited``.

    Pure function: neither argument is modified.
    """
    final = dict(inherited)
    final.update(resolved)
    return final
