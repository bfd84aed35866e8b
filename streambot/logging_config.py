"""Logging setup for streambot.

Outputs once config is loaded (``setup_logging(config)``):

    console            everything at the configured level
    logs/streambot.log same, rotated
    logs/chat.log      plain chat transcript built from ``chat_message``
                       events (``logging.chat_transcript``)

Before config is loaded (``setup_logging()``) only the console is set up.

structlog hands its event dicts to the stdlib handlers untouched
(``ProcessorFormatter.wrap_for_formatter``), so the transcript handler
can pick chat lines out by event name. Records from other libraries
(the irc client) go through the same token scrubbing on the way out.
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict

import structlog

LOGGER_PREFIX = "streambot"

# Loggers whose level can be overridden with logging.subsystem_levels
SUBSYSTEMS = ("bot", "session", "actions", "media")

TRANSCRIPT_EVENT = "chat_message"

_TOKEN_PATTERNS = (
    re.compile(r"oauth:[a-z0-9]{10,}", re.IGNORECASE),
    re.compile(r"Bearer\s+[a-zA-Z0-9_./-]{20,}"),
)

_REDACTED = "***REDACTED***"


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        for pattern in _TOKEN_PATTERNS:
            value = pattern.sub(_REDACTED, value)
        return value
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items()}
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor redacting Twitch OAuth and bearer tokens.

    Chat text is user input and can contain a pasted token as easily
    as the login handshake can, so every value is scrubbed, nested
    lists and dicts included.
    """
    return {key: _scrub(value) for key, value in event_dict.items()}


def _is_chat_line(record: logging.LogRecord) -> bool:
    return isinstance(record.msg, dict) and record.msg.get("event") == TRANSCRIPT_EVENT


class TranscriptFormatter(logging.Formatter):
    """``2026-01-01 20:15:03 #channel <sender> text``"""

    def format(self, record: logging.LogRecord) -> str:
        event = record.msg
        return "{} #{} <{}> {}".format(
            self.formatTime(record, "%Y-%m-%d %H:%M:%S"),
            event.get("channel", "?"),
            event.get("sender", "?"),
            event.get("text", ""),
        )


def _level(name: str, default: int) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def _rotating(path: Path, formatter: logging.Formatter, max_bytes: int, backups: int):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(config=None) -> None:
    """Configure structlog and the stdlib handlers behind it.

    Safe to call twice: the first call (no config) gives console
    logging for startup, the second replaces it with the configured
    outputs and turns on logger caching.
    """
    foreign_chain = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        sanitize_secrets,
    ]

    def rendered(colors: bool) -> structlog.stdlib.ProcessorFormatter:
        return structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=colors),
            ],
            foreign_pre_chain=foreign_chain,
        )

    level = _level(config.logging_level, logging.INFO) if config is not None else logging.INFO
    subsystem_levels = (config.logging_subsystem_levels or {}) if config is not None else {}

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(rendered(colors=sys.stdout.isatty()))
    root.addHandler(console)

    if config is not None:
        log_dir = config.log_dir
        max_bytes = config.logging_max_file_size_mb * 1024 * 1024
        backups = config.logging_backup_count
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            # Console-only: a read-only disk must not stop the bot
            print(
                f"WARNING: Cannot create log directory {log_dir}: {exc}. "
                "Logging to console only.",
                file=sys.stderr,
            )
        else:
            root.addHandler(
                _rotating(log_dir / "streambot.log", rendered(colors=False), max_bytes, backups)
            )
            if config.logging_chat_transcript:
                transcript = _rotating(
                    log_dir / "chat.log", TranscriptFormatter(), max_bytes, backups
                )
                transcript.addFilter(_is_chat_line)
                root.addHandler(transcript)

    for subsystem in SUBSYSTEMS:
        override = subsystem_levels.get(subsystem)
        logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}").setLevel(
            _level(override, level) if override else logging.NOTSET
        )
    # irc logs every raw line at DEBUG, PASS included
    logging.getLogger("irc").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            sanitize_secrets,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )
