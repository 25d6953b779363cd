"""
Logging helpers shared by the API, the worker and the CLI tools.
"""

import logging
import re
from pathlib import Path
from typing import Optional

_CONTROL_CHARS_RE = re.compile(r'[\r\n\x00-\x1f\x7f-\x9f]')
_WHITESPACE_RE = re.compile(r'\s+')

MAX_LOGGED_LENGTH = 500

_configured = False


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    sanitized = _CONTROL_CHARS_RE.sub(' ', str(text))
    sanitized = _WHITESPACE_RE.sub(' ', sanitized).strip()
    return sanitized[:MAX_LOGGED_LENGTH]


def setup_logging(logging_config=None, force: bool = False) -> None:
    """Configure root logging handlers once per process.

    Args:
        logging_config: LoggingConfig section (level, format, file, console).
            Defaults are used when omitted.
        force: Reconfigure even if logging was already set up
    """
    global _configured
    if _configured and not force:
        return

    level_name = getattr(logging_config, 'level', 'INFO') or 'INFO'
    fmt = getattr(logging_config, 'format', None) or '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_file: Optional[str] = getattr(logging_config, 'file', None)
    console = getattr(logging_config, 'console', True)

    handlers = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=getattr(logging, str(level_name).upper(), logging.INFO),
        format=fmt,
        handlers=handlers,
        force=True
    )
    _configured = True
