from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from importlib import resources
from typing import Dict, List, Optional

from ..foundation.exceptions import DriverNotAvailableError

_SCRIPT_NAME = "irace_driver.R"


def find_rscript(rscript: Optional[str] = None) -> str:
    """
    Locate the Rscript executable.

    Lookup order: the explicit argument, the RSCRIPT environment variable,
    then PATH. Raises DriverNotAvailableError when none is usable.
    """
    candidate = rscript or os.environ.get("RSCRIPT") or "Rscript"
    if os.path.sep in candidate or (os.path.altsep and os.path.altsep in candidate):
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
        raise DriverNotAvailableError(candidate, "irace")
    resolved = shutil.which(candidate)
    if resolved is None:
        raise DriverNotAvailableError(candidate, "irace")
    return resolved


def bundled_script() -> str:
    """Filesystem path of the R script shipped with racelink."""
    return str(resources.files("racelink.drivers").joinpath(_SCRIPT_NAME))


@dataclass
class IraceDriver:
    """
    Runs the R package irace through Rscript.

    Requires R with the `irace` and `jsonlite` packages. `r_libs` is
    prepended to R_LIBS_USER when the packages live in a private library.
    """

    rscript: Optional[str] = None
    script: Optional[str] = None
    r_libs: Optional[str] = None
    name: str = "irace"
    extra_env: Dict[str, str] = field(default_factory=dict)

    def command(self) -> List[str]:
        return [find_rscript(self.rscript), "--vanilla", self.script or bundled_script()]

    def environment(self) -> Optional[Dict[str, str]]:
        if self.r_libs is None and not self.extra_env:
            return None
        env = dict(os.environ)
        if self.r_libs is not None:
            current = env.get("R_LIBS_USER")
            env["R_LIBS_USER"] = self.r_libs if not current else os.pathsep.join([self.r_libs, current])
        env.update(self.extra_env)
        return env


__all__ = ["IraceDriver", "bundled_script", "find_rscript"]
