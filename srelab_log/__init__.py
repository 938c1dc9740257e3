"""Structured logging facade with call-site stamping and rotating file output.

Package-level functions log through one shared default logger; call
`init(Config(...))` once at start-up to send it to stdout and a rotating file.
"""

__all__ = [
    "__version__",
    "Config",
    "Entry",
    "Level",
    "LogCore",
    "Logger",
    "PanicError",
    "GzipRotatingFileHandler",
    "StdoutWriter",
    "base",
    "caller_site",
    "default_core",
    "get_level",
    "init",
    "initialized",
    "new",
    "parse_level",
    "set_level",
    "set_output",
    "with_error",
    "with_field",
    "with_fields",
    "trace",
    "tracef",
    "traceln",
    "debug",
    "debugf",
    "debugln",
    "print",
    "printf",
    "println",
    "info",
    "infof",
    "infoln",
    "warn",
    "warnf",
    "warnln",
    "error",
    "errorf",
    "errorln",
    "fatal",
    "fatalf",
    "fatalln",
    "panic",
    "panicf",
    "panicln",
]

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("srelab-log")
except Exception:  # pragma: no cover
    __version__ = "0.0.0"

from srelab_log.logging import (  # noqa: E402,A004  (intentional re-export)
    Config,
    Entry,
    Level,
    LogCore,
    Logger,
    PanicError,
    base,
    caller_site,
    debug,
    debugf,
    debugln,
    default_core,
    error,
    errorf,
    errorln,
    fatal,
    fatalf,
    fatalln,
    get_level,
    info,
    infof,
    infoln,
    init,
    initialized,
    new,
    panic,
    panicf,
    panicln,
    parse_level,
    print,
    printf,
    println,
    set_level,
    set_output,
    trace,
    tracef,
    traceln,
    warn,
    warnf,
    warnln,
    with_error,
    with_field,
    with_fields,
)
from srelab_log.sink import GzipRotatingFileHandler, StdoutWriter  # noqa: E402
