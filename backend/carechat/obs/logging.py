"""JSON logging for the API process.

Each record becomes one JSON line carrying the service name and the request
context. The HTTP middleware binds the request id and route; the auth
dependency adds the resolved caller id. Fields that can hold patient data
are masked before they are written.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from carechat.settings import settings

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("carechat_log_context", default={})

_MASKED_FIELDS = frozenset(
	{
		"content",
		"body",
		"file_name",
		"signed_url",
		"token",
		"authorization",
		"reason",
		"secret_key",
		"storage_signing_key",
	}
)
_MAX_TEXT = 200
_MAX_ITEMS = 10

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

_HANDLER_MARK = "_carechat_json"


def bind_context(**fields: Optional[str]) -> Token:
	"""Merge ``fields`` into the logging context; returns the token for ``reset_context``."""
	merged = dict(_CONTEXT.get())
	merged.update({key: value for key, value in fields.items() if value})
	return _CONTEXT.set(merged)


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def current_context() -> Dict[str, str]:
	return dict(_CONTEXT.get())


def _clip(value: Any) -> Any:
	if isinstance(value, str) and len(value) > _MAX_TEXT:
		return value[:_MAX_TEXT] + "..."
	if isinstance(value, (list, tuple, set)):
		items = [_clip(item) for item in list(value)[:_MAX_ITEMS]]
		if len(value) > _MAX_ITEMS:
			items.append(f"+{len(value) - _MAX_ITEMS} more")
		return items
	if isinstance(value, dict):
		return {key: mask_field(key, nested) for key, nested in list(value.items())[:_MAX_ITEMS]}
	if isinstance(value, datetime):
		return value.isoformat()
	return value


def mask_field(name: str, value: Any) -> Any:
	if value is None:
		return None
	if name.lower() in _MASKED_FIELDS:
		return "***"
	return _clip(value)


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"event": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
		}
		if settings.git_commit:
			payload["commit"] = settings.git_commit
		payload.update(_CONTEXT.get())
		for key, value in record.__dict__.items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = mask_field(key, value)
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Keep a share of INFO records; everything else passes."""

	def __init__(self, rate: float) -> None:
		super().__init__()
		self.rate = max(0.0, min(1.0, rate))

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO or self.rate >= 1.0:
			return True
		return random.random() < self.rate


def configure_logging() -> None:
	"""Install the JSON handler on the root logger once per process."""
	root = logging.getLogger()
	if any(getattr(handler, _HANDLER_MARK, False) for handler in root.handlers):
		return
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter(settings.obs_log_sampling_rate_info))
	setattr(handler, _HANDLER_MARK, True)
	root.handlers = [handler]
	root.setLevel(settings.obs_log_level)
	# The HTTP middleware already writes one line per request.
	logging.getLogger("uvicorn.access").disabled = True
