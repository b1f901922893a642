"""
Exception formatting and logging helpers for the forwarding path.

Both helpers are safe to call from an ``except`` block: they never raise, and
they redact the upstream credential from anything they produce.
"""

import logging
from typing import Optional

from tts_proxy.utils import mask_secret


def _safe_str(obj) -> str:
    """str() that falls back to repr() and then to the type name."""
    for render in (str, repr):
        try:
            return render(obj)
        except Exception:
            continue
    return f"<unprintable {type(obj).__name__}>"


def _describe(exception: BaseException) -> str:
    message = _safe_str(exception)
    name = type(exception).__name__
    return f"{name}: {message}" if message else name


def format_exception_message(
    exception: Optional[BaseException], secret: Optional[str] = None
) -> str:
    """
    Format an exception into a single line suitable for a response body.

    The exception type is included so an empty message (common for
    ``httpx.ConnectError`` raised by some transports) still says what failed.
    Sub-exceptions of exception groups are appended.

    Args:
        exception: The exception to format
        secret: A value that must never appear in the result

    Returns:
        A formatted, redacted string describing the exception
    """
    try:
        if exception is None:
            return "None"

        text = _describe(exception)
        if isinstance(exception, BaseExceptionGroup):
            parts = [_describe(sub_exc) for sub_exc in exception.exceptions]
            text = f"{text} (Sub-exceptions: {'; '.join(parts)})"

        return mask_secret(text, secret)
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Optional[BaseException],
    secret: Optional[str] = None,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, redacting ``secret`` from the message.
    Never raises, even when the exception object or the logger is broken.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Synthesis]")
        exception: The exception to log
        secret: A value that must never appear in the log line
        level: The logging level to use (default: ERROR)
    """
    try:
        message = f"{_safe_str(prefix)} {format_exception_message(exception, secret)}"
        # The traceback repeats the raw message, so drop it when that would leak
        leaks_secret = bool(secret) and secret in _safe_str(exception)
        try:
            logger.log(
                level,
                message,
                exc_info=exception if exception is not None and not leaks_secret else False,
            )
        except Exception:
            # Formatting the traceback failed; keep the summary line
            logger.log(level, message)
    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass
