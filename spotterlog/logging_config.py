"""
Logging setup for SpotterLog.

Every module logs through ``logging.getLogger(__name__)``; this module
installs the root handler once, with a formatter that masks credentials
before anything reaches the log sink.
"""

import logging
import re
from typing import List, Tuple

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# (pattern, replacement) applied in order to every formatted record
_MASKS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r'Bearer\s+[A-Za-z0-9\-_=.+/]+', re.IGNORECASE), 'Bearer [MASKED]'),
    (re.compile(r'eyJ[A-Za-z0-9\-_=]+\.[A-Za-z0-9\-_=]+\.?[A-Za-z0-9\-_.+/=]*'), 'eyJ***.[MASKED]'),
    (re.compile(r'(password|passwd|pwd)["\']?\s*[:=]\s*["\']?[^\s,"\']+', re.IGNORECASE), r'\1=[MASKED]'),
    (re.compile(r'(api[_-]?key|apikey|api[_-]?secret|client[_-]?secret)["\']?\s*[:=]\s*["\']?[^\s,"\']+',
                re.IGNORECASE), r'\1=[MASKED]'),
    (re.compile(r'(secret|token)["\']?\s*[:=]\s*["\']?[^\s,"\']{8,}', re.IGNORECASE), r'\1=[MASKED]'),
]


def sanitize(message: str) -> str:
    """Mask tokens, passwords and API keys in a log line."""
    for pattern, replacement in _MASKS:
        message = pattern.sub(replacement, message)
    return message


class SanitizingFormatter(logging.Formatter):
    """Formatter that runs :func:`sanitize` over the final log line."""

    def format(self, record: logging.LogRecord) -> str:
        return sanitize(super().format(record))


def configure_logging(debug: bool = False) -> None:
    """
    Configure the root logger.

    Safe to call more than once: the sanitizing handler is only
    installed the first time.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    if any(isinstance(h.formatter, SanitizingFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(SanitizingFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)

    # requests/urllib3 log full URLs at DEBUG
    logging.getLogger('urllib3').setLevel(logging.WARNING)
