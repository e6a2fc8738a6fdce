from __future__ import annotations

import logging


def configure_racelink_logging(*, level: int = logging.INFO) -> None:
    """
    Configure a minimal console logger for racelink.

    Notes:
        - This is intentionally opt-in (library code must not call logging.basicConfig()).
        - The handler is only attached if neither the root logger nor the "racelink" logger has handlers.
        - Driver output is relayed through the "racelink.driver" child logger.
    """
    root = logging.getLogger()
    racelink_logger = logging.getLogger("racelink")

    # If the user already configured logging, don't interfere.
    if root.handlers or racelink_logger.handlers:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    racelink_logger.addHandler(handler)
    racelink_logger.setLevel(level)
    racelink_logger.propagate = False


def driver_logger() -> logging.Logger:
    return logging.getLogger("racelink.driver")


__all__ = ["configure_racelink_logging", "driver_logger"]
