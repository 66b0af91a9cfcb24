"""
In-memory structured log buffer.

A logging.Handler that keeps the most recent records as plain dicts
({timestamp, level, message, context}) so scrape runs can be inspected by
polling instead of tailing stdout. Context is passed with
`logger.info(msg, extra={'context': {...}})`.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Dict, List, Optional

MAX_ENTRIES = 1000


class LogBuffer(logging.Handler):
    """Bounded ring of structured log entries"""

    def __init__(self, max_entries: int = MAX_ENTRIES, level: int = logging.INFO):
        super().__init__(level=level)
        self._entries = deque(maxlen=max_entries)

    def emit(self, record: logging.LogRecord):
        try:
            context = getattr(record, 'context', None)
            entry = {
                'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                'level': record.levelname.lower(),
                'message': record.getMessage(),
                'context': dict(context) if isinstance(context, dict) else None,
                'logger': record.name,
            }
            self._entries.append(entry)
        except Exception:
            self.handleError(record)

    def get_entries(self, level: Optional[str] = None) -> List[Dict]:
        """Snapshot of buffered entries, optionally filtered by level name"""
        if level:
            wanted = level.lower()
            if wanted == 'warn':
                wanted = 'warning'
            return [e for e in self._entries if e['level'] == wanted]
        return list(self._entries)

    def clear(self):
        self._entries.clear()

    def __len__(self):
        return len(self._entries)


def install_log_buffer(
    logger_names=('core', 'pipeline', 'crawler_v2'),
    max_entries: int = MAX_ENTRIES,
    level: int = logging.INFO,
) -> LogBuffer:
    """Attach one LogBuffer to the scraper's loggers and return it"""
    buffer = LogBuffer(max_entries=max_entries, level=level)
    for name in logger_names:
        target = logging.getLogger(name)
        target.addHandler(buffer)
        if target.level == logging.NOTSET or target.level > level:
            target.setLevel(level)
    return buffer


def remove_log_buffer(buffer: LogBuffer, logger_names=('core', 'pipeline', 'crawler_v2')):
    for name in logger_names:
        logging.getLogger(name).removeHandler(buffer)
