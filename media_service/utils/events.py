"""
Observers for compression engine events.

The engine never logs on its own; it reports what it does to an observer.
The Flask app plugs in a LoggingObserver so events end up in the JSON log.
"""
import logging


WARNING_EVENTS = {'target_missed', 'cancelled'}
ERROR_EVENTS = {'batch_failed'}


class CompressionObserver:
    """No-op observer. Subclass and override ``emit`` to receive events."""

    def emit(self, event: str, **fields) -> None:
        pass


class LoggingObserver(CompressionObserver):
    """Forwards engine events to a standard logger as structured records."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def emit(self, event: str, **fields) -> None:
        if event in ERROR_EVENTS:
            level = logging.ERROR
        elif event in WARNING_EVENTS:
            level = logging.WARNING
        else:
            level = logging.INFO

        summary = ', '.join(f'{key}={value}' for key, value in fields.items())
        self.logger.log(level, f'{event}: {summary}', extra={'event': event, **_log_extra(fields)})


def _log_extra(fields: dict) -> dict:
    # LogRecord reserves some attribute names; only pass through known fields
    allowed = ('filename', 'position', 'quality', 'size', 'attempt')
    return {f'image_{key}' if key == 'filename' else key: fields[key] for key in allowed if key in fields}
