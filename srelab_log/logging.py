from __future__ import annotations

import enum
import itertools
import logging
import os
import random
import re
import string
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping

from srelab_log.sink import MEGABYTE, GzipRotatingFileHandler, StdoutWriter

SOURCE_KEY = "src"
ERROR_KEY = "error"

# Frames between `caller_site` and the application: resolver, `_sourced`, facade method.
_CALLER_DEPTH = 2

_UNKNOWN_FILE = "<???>"


class Level(enum.IntEnum):
    """Severity, most severe first. A record is written iff its level <= the configured one."""

    PANIC = 0
    FATAL = 1
    ERROR = 2
    WARN = 3
    INFO = 4
    DEBUG = 5
    TRACE = 6


_STDLIB_LEVELS = {
    Level.PANIC: logging.CRITICAL + 10,
    Level.FATAL: logging.CRITICAL,
    Level.ERROR: logging.ERROR,
    Level.WARN: logging.WARNING,
    Level.INFO: logging.INFO,
    Level.DEBUG: logging.DEBUG,
    Level.TRACE: 5,
}

_LEVEL_NAMES = {
    "panic": Level.PANIC,
    "fatal": Level.FATAL,
    "error": Level.ERROR,
    "warn": Level.WARN,
    "warning": Level.WARN,
    "info": Level.INFO,
    "debug": Level.DEBUG,
    "trace": Level.TRACE,
}


def parse_level(name: str) -> Level:
    """Map a level name (case-insensitive) to a `Level`; raise ValueError if unknown."""
    try:
        return _LEVEL_NAMES[name.strip().lower()]
    except KeyError:
        raise ValueError(f"not a valid log level: {name!r}") from None


class PanicError(RuntimeError):
    """Raised after a PANIC record is written."""

    def __init__(self, message: str, fields: Mapping[str, Any]) -> None:
        super().__init__(message)
        self.message = message
        self.fields = dict(fields)


@dataclass(frozen=True)
class Config:
    file: str = ""
    level: str = "info"

    @classmethod
    def from_env(cls, env_prefix: str) -> Config:
        """Read `<PREFIX>_LOG_FILE` and `<PREFIX>_LOG_LEVEL`."""
        return cls(
            file=os.getenv(f"{env_prefix}_LOG_FILE", ""),
            level=os.getenv(f"{env_prefix}_LOG_LEVEL", "info"),
        )


def caller_site(skip: int) -> tuple[str, int]:
    """Return (file basename, line) of the frame `skip` levels above the caller.

    `skip=0` is the function calling `caller_site`. Falls back to ("<???>", 1)
    when the stack cannot be inspected.
    """
    try:
        frame = sys._getframe(skip + 1)
    except (ValueError, AttributeError):
        return _UNKNOWN_FILE, 1
    return os.path.basename(frame.f_code.co_filename), frame.f_lineno


_SAFE_VALUE = re.compile(r"^[A-Za-z0-9\-._/@^+:]+$")


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def _render_value(value: object) -> str:
    text = str(value)
    if _SAFE_VALUE.match(text):
        return text
    return _quote(text)


class UtcMillisFormatter(logging.Formatter):
    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}Z"


class KeyValueFormatter(UtcMillisFormatter):
    """`<ts> level=<LEVEL> msg="..." k=v ...` with fields sorted by key."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        severity: Level = getattr(record, "severity", Level.INFO)
        message = record.getMessage()
        if message.endswith("\n"):
            message = message[:-1]

        parts = [
            self.formatTime(record, self.datefmt),
            f"level={severity.name}",
            f"msg={_quote(message)}",
        ]
        fields: Mapping[str, Any] = getattr(record, "fields", {})
        for key in sorted(fields):
            parts.append(f"{_render_value(key)}={_render_value(fields[key])}")
        return " ".join(parts)


def _terminate(code: int) -> None:
    """Flush every logging handler, then end the whole process."""
    logging.shutdown()
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


_core_ids = itertools.count()


class LogCore:
    """Shared logger configuration: level, handlers and exit behaviour.

    Wraps a private stdlib logger that does the level gating and writing. Every
    `Logger` built on the same core sees `set_level`/`set_output` immediately.
    """

    def __init__(
        self,
        *,
        level: Level = Level.INFO,
        output: Any = None,
        exit_func: Callable[[int], Any] = _terminate,
    ) -> None:
        self.exit_func = exit_func
        self._formatter = KeyValueFormatter()

        self._logger = logging.getLogger(f"srelab_log.core.{next(_core_ids)}")
        self._logger.propagate = False
        self._logger.handlers = []

        self.set_output(output if output is not None else StdoutWriter())
        self.set_level(level)

    @property
    def level(self) -> Level:
        return self._level

    @property
    def handlers(self) -> list[logging.Handler]:
        return list(self._logger.handlers)

    def set_level(self, level: Level) -> None:
        self._level = Level(level)
        self._logger.setLevel(_STDLIB_LEVELS[self._level])

    def set_output(self, output: Any) -> None:
        """Send every record to the writer `output` only."""
        self.set_handlers(logging.StreamHandler(output))

    def set_handlers(self, *handlers: logging.Handler) -> None:
        """Replace all handlers; the replaced ones are closed."""
        previous = self.handlers
        for handler in handlers:
            handler.setFormatter(self._formatter)
            self._logger.addHandler(handler)
        for handler in previous:
            self._logger.removeHandler(handler)
            handler.close()

    def log(self, level: Level, msg: str, fields: Mapping[str, Any]) -> None:
        self._logger.log(
            _STDLIB_LEVELS[level],
            msg,
            extra={"severity": level, "fields": fields},
        )


def _sprint(args: tuple) -> str:
    return " ".join(str(arg) for arg in args)


def _sprintf(template: str, args: tuple) -> str:
    if not args:
        return template
    # Same rule as logging.LogRecord: a lone mapping feeds %(name)s placeholders.
    values = args[0] if len(args) == 1 and isinstance(args[0], Mapping) and args[0] else args
    try:
        return template % values
    except (TypeError, ValueError):
        return f"{template} {_sprint(args)}"


@dataclass(frozen=True)
class Entry:
    """Immutable bundle of fields bound to a `LogCore`.

    `with_*` return new entries; the receiver is never changed, so one base
    entry can be shared freely between threads.
    """

    core: LogCore
    fields: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def with_field(self, key: str, value: Any) -> Entry:
        return self._merged({key: value})

    def with_fields(self, /, **fields: Any) -> Entry:
        return self._merged(fields)

    def with_error(self, err: BaseException) -> Entry:
        return self._merged({ERROR_KEY: err})

    def log(self, level: Level, *args: Any) -> None:
        self._write(level, _sprint(args))

    def logf(self, level: Level, template: str, *args: Any) -> None:
        self._write(level, _sprintf(template, args))

    def logln(self, level: Level, *args: Any) -> None:
        self._write(level, _sprint(args) + "\n")

    def _merged(self, fields: Mapping[str, Any]) -> Entry:
        return Entry(self.core, MappingProxyType({**self.fields, **fields}))

    def _write(self, level: Level, msg: str) -> None:
        self.core.log(level, msg, self.fields)
        if level == Level.FATAL:
            self.core.exit_func(1)
        elif level == Level.PANIC:
            raise PanicError(msg.rstrip("\n"), self.fields)


class Logger:
    """Logging facade; every emission is stamped with `src=<file>:<line>` of its caller."""

    def __init__(self, entry: Entry) -> None:
        self._entry = entry

    @property
    def entry(self) -> Entry:
        return self._entry

    def with_field(self, key: str, value: Any) -> Logger:
        return Logger(self._entry.with_field(key, value))

    def with_fields(self, /, **fields: Any) -> Logger:
        return Logger(self._entry.with_fields(**fields))

    def with_error(self, err: BaseException) -> Logger:
        return Logger(self._entry.with_error(err))

    def set_level(self, level: Level) -> None:
        self._entry.core.set_level(level)

    def get_level(self) -> Level:
        return self._entry.core.level

    def set_output(self, output: Any) -> None:
        self._entry.core.set_output(output)

    def trace(self, *args: Any) -> None:
        self._sourced().log(Level.TRACE, *args)

    def debug(self, *args: Any) -> None:
        self._sourced().log(Level.DEBUG, *args)

    def print(self, *args: Any) -> None:
        self._sourced().log(Level.INFO, *args)

    def info(self, *args: Any) -> None:
        self._sourced().log(Level.INFO, *args)

    def warn(self, *args: Any) -> None:
        self._sourced().log(Level.WARN, *args)

    def error(self, *args: Any) -> None:
        self._sourced().log(Level.ERROR, *args)

    def fatal(self, *args: Any) -> None:
        """Log at FATAL, then exit the process with status 1."""
        self._sourced().log(Level.FATAL, *args)

    def panic(self, *args: Any) -> None:
        """Log at PANIC, then raise `PanicError`."""
        self._sourced().log(Level.PANIC, *args)

    def tracef(self, template: str, *args: Any) -> None:
        self._sourced().logf(Level.TRACE, template, *args)

    def debugf(self, template: str, *args: Any) -> None:
        self._sourced().logf(Level.DEBUG, template, *args)

    def printf(self, template: str, *args: Any) -> None:
        self._sourced().logf(Level.INFO, template, *args)

    def infof(self, template: str, *args: Any) -> None:
        self._sourced().logf(Level.INFO, template, *args)

    def warnf(self, template: str, *args: Any) -> None:
        self._sourced().logf(Level.WARN, template, *args)

    def errorf(self, template: str, *args: Any) -> None:
        self._sourced().logf(Level.ERROR, template, *args)

    def fatalf(self, template: str, *args: Any) -> None:
        self._sourced().logf(Level.FATAL, template, *args)

    def panicf(self, template: str, *args: Any) -> None:
        self._sourced().logf(Level.PANIC, template, *args)

    def traceln(self, *args: Any) -> None:
        self._sourced().logln(Level.TRACE, *args)

    def debugln(self, *args: Any) -> None:
        self._sourced().logln(Level.DEBUG, *args)

    def println(self, *args: Any) -> None:
        self._sourced().logln(Level.INFO, *args)

    def infoln(self, *args: Any) -> None:
        self._sourced().logln(Level.INFO, *args)

    def warnln(self, *args: Any) -> None:
        self._sourced().logln(Level.WARN, *args)

    def errorln(self, *args: Any) -> None:
        self._sourced().logln(Level.ERROR, *args)

    def fatalln(self, *args: Any) -> None:
        self._sourced().logln(Level.FATAL, *args)

    def panicln(self, *args: Any) -> None:
        self._sourced().logln(Level.PANIC, *args)

    def _sourced(self) -> Entry:
        # Must be called directly from a public method; see _CALLER_DEPTH.
        file_name, line = caller_site(_CALLER_DEPTH)
        return self._entry.with_field(SOURCE_KEY, f"{file_name}:{line}")


_default_core = LogCore()
_base = Logger(Entry(_default_core))
_configured = False


def default_core() -> LogCore:
    return _default_core


def new(core: LogCore | None = None) -> Logger:
    """Return a logger with no fields, bound to `core` (the default core if omitted)."""
    return Logger(Entry(core if core is not None else _default_core))


def base() -> Logger:
    return _base


def initialized() -> bool:
    return _configured


def _ensure_dir_rw(directory: str) -> None:
    os.makedirs(directory, exist_ok=True)
    if not os.access(directory, os.R_OK | os.W_OK):
        raise PermissionError(f"log directory is not readable and writable: {directory}")


def _random_lowercase(n: int) -> str:
    return "".join(random.choices(string.ascii_lowercase, k=n))


def resolve_log_file(path: str) -> Path:
    """Validate `path` as a log file location, falling back to ./<random>.log."""
    directory, name = os.path.dirname(path) or ".", os.path.basename(path)
    try:
        _ensure_dir_rw(directory)
        usable = bool(name) and not (os.path.exists(path) and not os.path.isfile(path))
    except OSError:
        usable = False

    if not usable:
        directory, name = ".", _random_lowercase(8) + ".log"
    return Path(directory) / name


def init(config: Config) -> Path:
    """Configure the default logger: level plus stdout and a rotating file.

    Never raises on bad configuration: an unusable file path falls back to
    ./<8 lowercase letters>.log and an unknown level to INFO. Calling it again
    re-applies the configuration. Returns the log file path in use.
    """
    global _configured

    log_file = resolve_log_file(config.file)

    try:
        level = parse_level(config.level)
    except ValueError:
        level = Level.INFO

    file_handler = GzipRotatingFileHandler(
        log_file,
        max_bytes=500 * MEGABYTE,
        backup_count=3,
        max_age_days=28,
        compress=True,
    )

    set_level(level)
    _default_core.set_handlers(logging.StreamHandler(StdoutWriter()), file_handler)
    _configured = True
    return log_file


def set_level(level: Level) -> None:
    _default_core.set_level(level)


def get_level() -> Level:
    return _default_core.level


def set_output(output: Any) -> None:
    _default_core.set_output(output)


def with_field(key: str, value: Any) -> Logger:
    return _base.with_field(key, value)


def with_fields(**fields: Any) -> Logger:
    return _base.with_fields(**fields)


def with_error(err: BaseException) -> Logger:
    return Logger(_base._sourced().with_error(err))


def trace(*args: Any) -> None:
    _base._sourced().log(Level.TRACE, *args)


def tracef(template: str, *args: Any) -> None:
    _base._sourced().logf(Level.TRACE, template, *args)


def traceln(*args: Any) -> None:
    _base._sourced().logln(Level.TRACE, *args)


def debug(*args: Any) -> None:
    _base._sourced().log(Level.DEBUG, *args)


def debugf(template: str, *args: Any) -> None:
    _base._sourced().logf(Level.DEBUG, template, *args)


def debugln(*args: Any) -> None:
    _base._sourced().logln(Level.DEBUG, *args)


def print(*args: Any) -> None:  # noqa: A001
    _base._sourced().log(Level.INFO, *args)


def printf(template: str, *args: Any) -> None:
    _base._sourced().logf(Level.INFO, template, *args)


def println(*args: Any) -> None:
    _base._sourced().logln(Level.INFO, *args)


def info(*args: Any) -> None:
    _base._sourced().log(Level.INFO, *args)


def infof(template: str, *args: Any) -> None:
    _base._sourced().logf(Level.INFO, template, *args)


def infoln(*args: Any) -> None:
    _base._sourced().logln(Level.INFO, *args)


def warn(*args: Any) -> None:
    _base._sourced().log(Level.WARN, *args)


def warnf(template: str, *args: Any) -> None:
    _base._sourced().logf(Level.WARN, template, *args)


def warnln(*args: Any) -> None:
    _base._sourced().logln(Level.WARN, *args)


def error(*args: Any) -> None:
    _base._sourced().log(Level.ERROR, *args)


def errorf(template: str, *args: Any) -> None:
    _base._sourced().logf(Level.ERROR, template, *args)


def errorln(*args: Any) -> None:
    _base._sourced().logln(Level.ERROR, *args)


def fatal(*args: Any) -> None:
    _base._sourced().log(Level.FATAL, *args)


def fatalf(template: str, *args: Any) -> None:
    _base._sourced().logf(Level.FATAL, template, *args)


def fatalln(*args: Any) -> None:
    _base._sourced().logln(Level.FATAL, *args)


def panic(*args: Any) -> None:
    _base._sourced().log(Level.PANIC, *args)


def panicf(template: str, *args: Any) -> None:
    _base._sourced().logf(Level.PANIC, template, *args)


def panicln(*args: Any) -> None:
    _base._sourced().logln(Level.PANIC, *args)
