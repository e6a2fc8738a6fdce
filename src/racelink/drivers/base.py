from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable


@runtime_checkable
class Driver(Protocol):
    """
    Describes how to launch an external racing driver.

    The launched process must speak the racelink wire protocol on its
    stdin/stdout; anything it writes to stderr is relayed to the log.
    """

    name: str

    def command(self) -> List[str]: ...

    def environment(self) -> Optional[Dict[str, str]]: ...


@dataclass
class CommandDriver:
    """A driver launched from an explicit argv, e.g. a custom or mock driver script."""

    argv: Sequence[str]
    env: Optional[Mapping[str, str]] = None
    name: str = "command"
    cwd: Optional[str] = None
    extra_env: Dict[str, str] = field(default_factory=dict)

    def command(self) -> List[str]:
        if not self.argv:
            raise ValueError("CommandDriver needs a non-empty argv")
        return [str(a) for a in self.argv]

    def environment(self) -> Optional[Dict[str, str]]:
        if self.env is None and not self.extra_env:
            return None
        env = dict(os.environ if self.env is None else self.env)
        env.update(self.extra_env)
        return env


__all__ = ["Driver", "CommandDriver"]
