"""
Per-sync log capture.

Every line goes to the module logger and is also kept, timestamped, so the
executor can store it with the history record.
"""

import logging
from datetime import datetime
from typing import List


logger = logging.getLogger('repokeeper.mirror')


class SyncLog:
    """Collects log lines for one (repository, destination) sync."""

    def __init__(self, **context):
        """
        Args:
            **context: Fields attached to every line (stage, path, repo, ...)
        """
        self.context = {'stage': 'locally'}
        self.context.update(context)
        self.lines: List[str] = []

    def bind(self, **context):
        self.context.update(context)

    def debug(self, message: str, **fields):
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields):
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields):
        self._emit(logging.WARNING, message, fields)

    def error(self, message: str, **fields):
        self._emit(logging.ERROR, message, fields)

    def _emit(self, level: int, message: str, fields: dict):
        merged = dict(self.context)
        merged.update(fields)
        context = ' '.join(f"{key}={value}" for key, value in merged.items() if value not in (None, ''))

        logger.log(level, f"{message} [{context}]")

        if level >= logging.INFO:
            timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
            self.lines.append(f"[{timestamp}] {logging.getLevelName(level)} {message} [{context}]")

    def text(self) -> str:
        return '\n'.join(self.lines)
