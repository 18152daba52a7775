"""pyhpfem.diagnostics
Leveled event reporting on top of :mod:`logging`.

Every space, discrete problem and solver receives a :class:`Diagnostics`
object instead of consulting module-level switches.  The object decides which
levels are reported; formatting and routing stay with the ``logging``
handlers configured by the application.
"""
from __future__ import annotations

import enum
import logging
import os
import time
from contextlib import contextmanager
from typing import Iterable, Optional

from pyhpfem.errors import FatalError

VERBOSE = 15
TRACE = 5
logging.addLevelName(VERBOSE, "VERBOSE")
logging.addLevelName(TRACE, "TRACE")


class Level(enum.IntEnum):
    ERROR = logging.ERROR
    WARNING = logging.WARNING
    INFO = logging.INFO
    VERBOSE = VERBOSE
    DEBUG = logging.DEBUG
    TRACE = TRACE


DEFAULT_LEVELS = frozenset({Level.ERROR, Level.WARNING, Level.INFO})

_ALIASES = {"warn": Level.WARNING, "err": Level.ERROR}


def parse_levels(text: str) -> frozenset:
    """Parse ``"info,verbose"`` / ``"all"`` / ``"none"`` into a level set."""
    text = (text or "").strip().lower()
    if text in {"", "default"}:
        return DEFAULT_LEVELS
    if text == "all":
        return frozenset(Level)
    if text == "none":
        return frozenset({Level.ERROR})
    levels = {Level.ERROR}
    for token in text.split(","):
        token = token.strip()
        if not token:
            continue
        if token in _ALIASES:
            levels.add(_ALIASES[token])
            continue
        try:
            levels.add(Level[token.upper()])
        except KeyError:
            raise ValueError(f"Unknown report level '{token}'.") from None
    return frozenset(levels)


class Diagnostics:
    """Runtime-configurable reporting context.

    Parameters
    ----------
    levels : iterable of Level, optional
        Levels that are reported.  ``ERROR`` is always enabled.
    logger : logging.Logger, optional
        Target logger, ``logging.getLogger("pyhpfem")`` by default.
    """

    def __init__(self, levels: Optional[Iterable[Level]] = None, logger: Optional[logging.Logger] = None):
        lv = DEFAULT_LEVELS if levels is None else frozenset(Level(l) for l in levels)
        self.levels = frozenset(lv | {Level.ERROR})
        self.logger = logger if logger is not None else logging.getLogger("pyhpfem")

    @classmethod
    def from_env(cls, var: str = "PYHPFEM_REPORT", logger: Optional[logging.Logger] = None) -> "Diagnostics":
        return cls(parse_levels(os.getenv(var, "")), logger=logger)

    @classmethod
    def quiet(cls) -> "Diagnostics":
        return cls({Level.ERROR})

    def enabled(self, level: Level) -> bool:
        return Level(level) in self.levels

    def enable(self, *levels: Level) -> None:
        self.levels = self.levels | {Level(l) for l in levels}

    def disable(self, *levels: Level) -> None:
        self.levels = (self.levels - {Level(l) for l in levels}) | {Level.ERROR}

    def _emit(self, level: Level, msg: str, args) -> None:
        if level in self.levels:
            self.logger.log(int(level), msg, *args, stacklevel=3)

    # -- public reporting API ----------------------------------------------
    def error(self, msg: str, *args):
        """Log at ERROR and raise :class:`FatalError`."""
        self._emit(Level.ERROR, msg, args)
        raise FatalError(msg % args if args else msg)

    def warn(self, msg: str, *args) -> None:
        self._emit(Level.WARNING, msg, args)

    def info(self, msg: str, *args) -> None:
        self._emit(Level.INFO, msg, args)

    def verbose(self, msg: str, *args) -> None:
        self._emit(Level.VERBOSE, msg, args)

    def debug(self, msg: str, *args) -> None:
        self._emit(Level.DEBUG, msg, args)

    def trace(self, msg: str, *args) -> None:
        self._emit(Level.TRACE, msg, args)

    @contextmanager
    def timer(self, label: str):
        """Report the wall-clock time of the ``with`` body at VERBOSE."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            if Level.VERBOSE in self.levels:
                self._emit(Level.VERBOSE, "%s: %.3e s", (label, time.perf_counter() - t0))

    def __repr__(self) -> str:
        names = ",".join(sorted(l.name.lower() for l in self.levels))
        return f"<Diagnostics levels={names} logger={self.logger.name!r}>"


__all__ = ["Diagnostics", "Level", "parse_levels", "VERBOSE", "TRACE", "DEFAULT_LEVELS"]
