"""Structured logging setup"""
import json
import logging
import os
import socket
import sys

# Extra attributes the engine attaches to records (logger.info(..., extra={...}))
CONTEXT_FIELDS = ('workflow', 'run_id', 'node', 'step')


def setup_logging(settings=None):
    """Setup structured logging

    ``settings`` is a MonitoringSettings-like object or a dict with
    ``logLevel`` and ``logFormat`` keys; LOG_LEVEL in the environment wins.
    """
    if isinstance(settings, dict):
        level = settings.get('logLevel', 'INFO')
        format_type = settings.get('logFormat', 'json')
    elif settings is not None:
        level = settings.log_level
        format_type = settings.log_format
    else:
        level, format_type = 'INFO', 'json'
    level = os.getenv('LOG_LEVEL', level).upper()

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level, logging.INFO))

    # Replace a handler installed by an earlier call
    for handler in list(logger.handlers):
        if getattr(handler, '_workflow_handler', False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler._workflow_handler = True

    if format_type == 'json':
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    logger.addHandler(handler)

    return logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    """JSON log formatter"""
    def format(self, record):
        log_entry = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'service_name': os.getenv('SERVICE_NAME', socket.gethostname()),
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)
