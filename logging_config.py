"""
Logging configuration for presse.

Simple setup that adapters and tools can import.
validation.py and models.py should NOT log (they're pure).
"""

import logging
import sys

# Create logger for the package
logger = logging.getLogger("presse")

# Data URLs and documents can be megabytes; keep log lines readable
_MAX_LOGGED_CHARS = 120


def configure_logging(level: str = "INFO") -> None:
    """
    Configure logging for presse.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    logger.setLevel(getattr(logging, level.upper()))

    # Only add handler if not already configured
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)

        # stdout is reserved for CLI JSON / MCP stdio
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)


# NOTE: Call configure_logging() explicitly in cli.py, server.py or test setup.
# We don't auto-configure to avoid side effects on import.


def shorten(text: str, limit: int = _MAX_LOGGED_CHARS) -> str:
    """Truncate long values (data URLs, HTML) for log output."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... ({len(text)} chars)"


# Convenience functions for common patterns
def log_cdp_command(method: str, command_id: int, **params: object) -> None:
    """Log an outgoing CDP command with key parameters.

    Returns before formatting unless DEBUG is enabled, so large payloads
    are never repr()'d.
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return
    param_str = ", ".join(
        f"{k}={shorten(repr(v))}" for k, v in params.items() if v is not None
    )
    logger.debug(f"CDP -> #{command_id} {method}({param_str})")


def log_cdp_event(method: str) -> None:
    """Log an incoming CDP event."""
    logger.debug(f"CDP <- event {method}")


def log_retry(attempt: int, max_attempts: int, delay_ms: int, reason: str) -> None:
    """Log a retry attempt."""
    logger.warning(
        f"Retry {attempt}/{max_attempts} in {delay_ms}ms: {reason}"
    )
