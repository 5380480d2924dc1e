# telemetry/logger.py
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

EVENT_LOGGER_NAME = "telemetry.events"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))
        return
    logging.basicConfig(
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _configured = True


def sanitize(value: Any) -> str:
    """
    Strip control characters (CR, LF, ...) from user-supplied values so they
    cannot forge extra log lines. Plain spaces are kept.
    """
    if value is None:
        return ""
    text = str(value)
    return "".join(ch for ch in text if ch == " " or (ch.isprintable() and ch not in "\r\n"))


def log_event(event: str, payload: Dict[str, Any], user: Optional[str] = None) -> None:
    """
    Telemetry must NEVER crash production logic.
    Payload should avoid secrets and raw tokens.
    """
    try:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "user": sanitize(user) if user is not None else None,
            "payload": {k: sanitize(v) if isinstance(v, str) else v for k, v in payload.items()},
        }
        logging.getLogger(EVENT_LOGGER_NAME).info(json.dumps(record, ensure_ascii=False, default=str))
    except Exception:
        pass
