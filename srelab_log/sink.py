"""Output pieces: a late-bound stdout writer and a compressing rotating file handler."""

from __future__ import annotations

import gzip
import os
import re
import shutil
import sys
import time
from logging.handlers import RotatingFileHandler

MEGABYTE = 1024 * 1024

_COMPRESS_SUFFIX = ".gz"


class StdoutWriter:
    """Write to whatever `sys.stdout` is at write time."""

    def write(self, text: str) -> int:
        return sys.stdout.write(text)

    def flush(self) -> None:
        sys.stdout.flush()


def _gzip_namer(name: str) -> str:
    return name + _COMPRESS_SUFFIX


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    os.remove(source)


class GzipRotatingFileHandler(RotatingFileHandler):
    """Size-rotated log file with gzip backups and age-based pruning.

    - Rolls over once the next record would reach `max_bytes`.
    - Keeps `backup_count` backups: `<file>.1[.gz]` (newest) ... `<file>.N[.gz]`.
    - After each rollover removes backups last modified more than
      `max_age_days` ago (0 disables).
    """

    def __init__(
        self,
        filename: str | os.PathLike[str],
        *,
        max_bytes: int = 500 * MEGABYTE,
        backup_count: int = 3,
        max_age_days: int = 28,
        compress: bool = True,
    ) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(filename)), exist_ok=True)
        super().__init__(
            filename,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        self.max_age_days = max_age_days
        if compress:
            self.namer = _gzip_namer
            self.rotator = _gzip_rotator

    def backups(self) -> list[str]:
        """Rotated siblings of the log file, newest first."""
        directory, name = os.path.split(self.baseFilename)
        pattern = re.compile(re.escape(name) + r"\.(\d+)(?:" + re.escape(_COMPRESS_SUFFIX) + ")?")
        found = []
        for candidate in os.listdir(directory):
            match = pattern.fullmatch(candidate)
            if match:
                found.append((int(match.group(1)), os.path.join(directory, candidate)))
        return [path for _, path in sorted(found)]

    def doRollover(self) -> None:
        super().doRollover()
        if self.max_age_days > 0:
            self._remove_expired()

    def _remove_expired(self) -> None:
        cutoff = time.time() - self.max_age_days * 24 * 60 * 60
        for backup in self.backups():
            try:
                if os.path.getmtime(backup) < cutoff:
                    os.remove(backup)
            except FileNotFoundError:
                continue
