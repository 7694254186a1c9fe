"""Structured JSON logging utilities for event-based logging."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a single JSON line."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "event_type"):
            log_data["event_type"] = record.event_type
        if hasattr(record, "event_data"):
            log_data.update(record.event_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # payloads may carry datetimes or enums
        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure JSON logging on the root logger."""
    json_formatter = JSONFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(json_formatter)
    handlers: list[logging.Handler] = [console_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(json_formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = handlers

    # Suppress verbose logging from dependencies
    for name in ("websockets", "aiohttp", "ocpp", "pymodbus", "aiosqlite"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _event_extra(event_type: str, event_data: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
    """Build the ``extra`` mapping, dropping fields whose value is None."""
    for key, value in kwargs.items():
        if value is not None:
            event_data[key] = value
    return {"event_type": event_type, "event_data": event_data}


def log_ocpp_message(
    logger: logging.Logger,
    direction: str,
    cp_id: str,
    message_type: str,
    message_id: str | None = None,
    action: str | None = None,
    payload: Any = None,
    **kwargs: Any,
) -> None:
    """
    Log an OCPP message event.

    Args:
        logger: Logger instance
        direction: "received" or "sent"
        cp_id: Charge point ID
        message_type: "CALL", "CALLRESULT" or "CALLERROR"
        message_id: OCPP unique message ID
        action: OCPP action name (e.g., "BootNotification")
        payload: Message payload
        **kwargs: Additional fields to include
    """
    extra = _event_extra(
        "ocpp_message",
        {"direction": direction, "cp_id": cp_id, "message_type": message_type},
        message_id=message_id,
        action=action,
        payload=payload,
        **kwargs,
    )
    logger.info(f"OCPP {direction}: {action or message_type}", extra=extra)


def log_websocket_event(
    logger: logging.Logger,
    event: str,
    cp_id: str | None = None,
    **kwargs: Any,
) -> None:
    """Log a WebSocket connect/disconnect/reject event."""
    extra = _event_extra("websocket_event", {"event": event}, cp_id=cp_id, **kwargs)
    logger.info(f"WebSocket {event}", extra=extra)


def log_device_event(
    logger: logging.Logger,
    event: str,
    device: str,
    host: str,
    level: int = logging.INFO,
    **kwargs: Any,
) -> None:
    """
    Log a device communication event (connect, reconnect, write, poll).

    Args:
        logger: Logger instance
        event: Event name (e.g., "connected", "reconnect", "keep_alive")
        device: Device kind or class name
        host: Device host address
        level: Log level for the record
        **kwargs: Additional fields to include
    """
    extra = _event_extra("device_event", {"event": event, "device": device, "host": host}, **kwargs)
    logger.log(level, f"Device {device}@{host} {event}", extra=extra)


def log_error(
    logger: logging.Logger,
    error_type: str,
    message: str,
    cp_id: str | None = None,
    exc_info: BaseException | None = None,
    **kwargs: Any,
) -> None:
    """
    Log an error event.

    Args:
        logger: Logger instance
        error_type: Type of error (e.g., "device_poll_error", "handler_error")
        message: Error message
        cp_id: Charge point ID (if applicable)
        exc_info: Exception object (will extract traceback)
        **kwargs: Additional fields to include
    """
    extra = _event_extra("error", {"error_type": error_type}, cp_id=cp_id, **kwargs)
    logger.error(message, extra=extra, exc_info=exc_info)
