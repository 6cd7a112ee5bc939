import logging
from logging.handlers import RotatingFileHandler

logger = logging.getLogger('samlidp')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(module)s - %(message)s'


def add_file_handler(path, max_bytes=500000, backup_count=1):
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    return handler


class LoggerSink(object):
    """Forwards diagnostics to anything exposing ``info(message)``."""

    def __init__(self, target):
        self._target = target

    def emit(self, message):
        self._target.info(message)


class CallableSink(object):

    def __init__(self, func):
        self._func = func

    def emit(self, message):
        self._func(message)


def make_sink(target=None):
    """
    Adapts a log target to the single ``emit(message)`` capability used
    for request diagnostics.

    Args:
        target: None (package logger), a ``logging.Logger``-like object,
            a callable taking the message, or an object that already
            exposes ``emit(message)``.
    """
    if target is None:
        return LoggerSink(logger)
    if isinstance(target, (LoggerSink, CallableSink)):
        return target
    if hasattr(target, 'info'):
        return LoggerSink(target)
    if callable(target):
        return CallableSink(target)
    if hasattr(target, 'emit'):
        return target
    raise TypeError('Unsupported log sink: {!r}'.format(target))
