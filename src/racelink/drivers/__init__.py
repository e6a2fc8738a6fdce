"""
Launchers for external racing drivers.

A driver is any process that speaks the racelink protocol on its
stdin/stdout (see racelink.protocol).
"""
from __future__ import annotations

from typing import Union

from .base import CommandDriver, Driver
from .irace import IraceDriver
from .reference import ReferenceDriver


def resolve_driver(name: Union[str, Driver, None] = None) -> Driver:
    """Return a driver instance for `name` ("irace" or "reference"); driver objects pass through."""
    if name is not None and not isinstance(name, str):
        return name
    key = (name or "irace").lower()
    if key == "reference":
        return ReferenceDriver()
    if key == "irace":
        return IraceDriver()
    raise ValueError(f"Unknown driver '{name}'. Available: irace, reference")


__all__ = ["Driver", "CommandDriver", "IraceDriver", "ReferenceDriver", "resolve_driver"]
