"""
Exception helpers used on the proxy error path.

Transport failures can surface as plain exceptions or as exception groups
raised from task groups inside the HTTP client. Both helpers below never
raise, even for exceptions whose ``__str__`` is broken, because they run
while an error response is being produced.
"""

import logging


def _safe_str(obj) -> str:
    """Best-effort string conversion that never raises."""
    try:
        return str(obj)
    except Exception:
        pass
    try:
        return repr(obj)
    except Exception:
        pass
    try:
        return f"<{type(obj).__name__} object (string conversion failed)>"
    except Exception:
        return "<object (all string conversions failed)>"


def _sub_exceptions(exception) -> list:
    """Return the members of an exception group, or an empty list."""
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def _describe(exception) -> str:
    exc_type = type(exception).__name__ if exception is not None else "NoneType"
    return f"{exc_type}: {_safe_str(exception)}"


def format_exception_message(exception: Exception) -> str:
    """
    Render an exception as the text shown to clients.

    Ordinary exceptions render as ``str(exception)``. Exception groups append
    their members, e.g. ``"errors (Sub-exceptions: ConnectError: refused)"``.
    """
    if exception is None:
        return "None"

    sub_exceptions = _sub_exceptions(exception)
    if not sub_exceptions:
        return _safe_str(exception)

    try:
        joined = "; ".join(_describe(sub_exc) for sub_exc in sub_exceptions)
        return f"{_safe_str(exception)} (Sub-exceptions: {joined})"
    except Exception:
        return _safe_str(exception)


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, one extra line per member of an
    exception group. Logging failures are dropped.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g. "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    safe_prefix = _safe_str(prefix) if prefix is not None else ""
    sub_exceptions = _sub_exceptions(exception)

    try:
        if not sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
            f"{_safe_str(exception)}",
        )
        for i, sub_exc in enumerate(sub_exceptions, start=1):
            logger.log(
                level,
                f"{safe_prefix} Sub-exception {i}: {_describe(sub_exc)}",
                exc_info=sub_exc,
            )
    except Exception:
        try:
            logger.log(level, f"{safe_prefix} Exception (logging failed)")
        except Exception:
            return


def unwrap_single_exception(exception: BaseException) -> BaseException:
    """
    Return the lone member of (possibly nested) single-member exception
    groups, so a failure raised inside a task group surfaces as itself.
    """
    sub_exceptions = _sub_exceptions(exception)
    while len(sub_exceptions) == 1:
        exception = sub_exceptions[0]
        sub_exceptions = _sub_exceptions(exception)
    return exception
