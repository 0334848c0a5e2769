"""
Structured logging for Lattice360

Wraps the standard logging module so call sites log an event name plus
keyword context:

    logger.info("task_assigned", mentor_id=uid, count=3)
    logger.security_event("failed_login", user_id=uid, ip_address=ip)
"""
import json
import logging
import os
import sys


class StructuredLogger:
    """Event-style logger that serialises keyword context as JSON"""

    def __init__(self, name: str = 'lattice360', level: str = None):
        self._logger = logging.getLogger(name)
        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter(
                '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            ))
            self._logger.addHandler(handler)
        self._logger.setLevel(level or os.environ.get('LOG_LEVEL', 'INFO'))
        self._logger.propagate = False

    def set_level(self, level: str):
        self._logger.setLevel(level)

    @staticmethod
    def _format(event: str, context: dict) -> str:
        if not context:
            return event
        return f"{event} {json.dumps(context, default=str, sort_keys=True)}"

    def _log(self, level: int, event: str, exc_info=False, **context):
        self._logger.log(level, self._format(event, context), exc_info=exc_info)

    def debug(self, event: str, **context):
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context):
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context):
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, exc_info=False, **context):
        self._log(logging.ERROR, event, exc_info=exc_info, **context)

    def security_event(self, event: str, **context):
        """Auth and access-control events, always logged at WARNING"""
        self._log(logging.WARNING, f"security.{event}", **context)


logger = StructuredLogger()
