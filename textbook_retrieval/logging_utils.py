import json
import logging
import os
import sys

PLAIN_FORMAT = "%(levelname)s %(name)s - %(message)s"
DEBUG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d - %(message)s"


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record, for `--log-json`."""

    def format(self, record: logging.LogRecord) -> str:
        out = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(out, ensure_ascii=False)


def resolve_level(level=None) -> int:
    """Explicit level, else LOG_LEVEL from the environment, else INFO."""
    level = level or os.getenv("LOG_LEVEL") or logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level=None, json_logs: bool = False) -> None:
    """Send all library logging to stderr; replaces any handlers already installed."""
    final_level = resolve_level(level)
    if json_logs:
        formatter = JsonLineFormatter()
    else:
        fmt = DEBUG_FORMAT if final_level <= logging.DEBUG else PLAIN_FORMAT
        formatter = logging.Formatter(fmt, datefmt="%Y-%m-%d %H:%M:%S")

    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(formatter)
    logging.basicConfig(level=final_level, handlers=[handler], force=True)
