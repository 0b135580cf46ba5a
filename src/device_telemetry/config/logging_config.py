import json
import logging
import sys
from datetime import UTC, datetime

from device_telemetry.context import get_collection_context

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        context = get_collection_context()
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": context.run_id,
            "tenant_id": context.tenant_id,
            "integration_id": context.integration_id,
            "vendor": context.vendor,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def setup_logging(level: int | str | None = None, force: bool = False, fmt: str | None = None) -> None:
    """Install a stdout handler on the root logger.

    Level and format default to LOG_LEVEL / LOG_FORMAT from settings.
    """
    root = logging.getLogger()
    if root.handlers and not force:
        return
    if force:
        root.handlers.clear()

    if level is None or fmt is None:
        from device_telemetry.config.settings import get_settings

        settings = get_settings()
        level = level if level is not None else settings.log_level
        fmt = fmt or settings.log_format

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())

    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.addHandler(handler)
