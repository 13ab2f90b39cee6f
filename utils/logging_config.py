import os
import json
import logging
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime, timezone
from pathlib import Path
import contextvars
from typing import Optional
import hashlib
import time

from fastapi import Request
from starlette.responses import Response

from utils.jwt import user_id_from_authorization

# Context variables for correlation and user identity
correlation_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("correlation_id", default=None)
user_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("user_id", default=None)

# Attributes every LogRecord carries; anything else arrived through `extra=`
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "correlation_id", "user_id"}


class ContextFilter(logging.Filter):
	def filter(self, record: logging.LogRecord) -> bool:
		record.correlation_id = correlation_id_ctx.get()
		if getattr(record, "user_id", None) is None:
			record.user_id = user_id_ctx.get()
		return True


class JsonFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:
		payload = {
			"timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
			"level": record.levelname,
			"logger": record.name,
			"message": record.getMessage(),
			"correlation_id": getattr(record, "correlation_id", None),
			"user_id": getattr(record, "user_id", None),
		}
		for key, val in vars(record).items():
			if key in _RESERVED_ATTRS or key.startswith("_") or val is None:
				continue
			payload[key] = val
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, ensure_ascii=False, default=str)


def _make_rotating_file_handler(path: Path, level: int) -> logging.Handler:
	path.parent.mkdir(parents=True, exist_ok=True)
	handler = TimedRotatingFileHandler(path, when="midnight", backupCount=int(os.getenv("LOG_BACKUP_COUNT", "7")), utc=True)
	handler.setLevel(level)
	handler.setFormatter(JsonFormatter())
	handler.addFilter(ContextFilter())
	return handler


def _resolve_level() -> int:
	level_name = os.getenv("LOG_LEVEL", "INFO").upper()
	return getattr(logging, level_name, logging.INFO)


def init_logging():
	"""Initialize application logging with console + rotating file handlers."""
	log_dir = Path(os.getenv("LOG_DIR", "logs"))
	level = _resolve_level()

	root = logging.getLogger()
	root.setLevel(level)

	# Remove existing handlers to avoid duplicates on reload
	for h in list(root.handlers):
		root.removeHandler(h)
		h.close()

	console = logging.StreamHandler()
	console.setLevel(level)
	console.setFormatter(JsonFormatter())
	console.addFilter(ContextFilter())
	root.addHandler(console)

	root.addHandler(_make_rotating_file_handler(log_dir / "app.log", level))
	root.addHandler(_make_rotating_file_handler(log_dir / "error.log", logging.ERROR))

	logging.getLogger(__name__).info("Logging initialized")


def _request_fields(request: Request, status_code: int, started: float) -> dict:
	return {
		"path": request.url.path,
		"method": request.method,
		"status_code": status_code,
		"latency_ms": int((time.perf_counter() - started) * 1000),
		"client_host": request.client.host if request.client else None,
	}


def install_request_logging(app):
	"""Log every request once, tagged with a correlation ID echoed back as X-Request-ID."""
	logger = logging.getLogger("request")

	@app.middleware("http")
	async def _log_middleware(request: Request, call_next):
		corr = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID") or os.urandom(8).hex()
		corr_token = correlation_id_ctx.set(corr)
		user_token = user_id_ctx.set(user_id_from_authorization(request.headers.get("Authorization")))

		started = time.perf_counter()
		try:
			response: Response = await call_next(request)
		except Exception:
			logger.error("request_failed", exc_info=True, extra=_request_fields(request, 500, started))
			raise
		else:
			logger.info("request_completed", extra=_request_fields(request, response.status_code, started))
			response.headers["X-Request-ID"] = corr
			return response
		finally:
			correlation_id_ctx.reset(corr_token)
			user_id_ctx.reset(user_token)


def init_worker_logging():
	"""Initialize logging for Celery workers with a dedicated rotating file."""
	log_dir = Path(os.getenv("LOG_DIR", "logs"))
	level = _resolve_level()

	handler = _make_rotating_file_handler(log_dir / "tasks.log", level)
	for name in ("celery", "tasks"):
		logger = logging.getLogger(name)
		logger.setLevel(level)
		# Avoid duplicate handlers on worker autoreload
		for h in list(logger.handlers):
			logger.removeHandler(h)
			h.close()
		logger.addHandler(handler)
		logger.propagate = True

	logging.getLogger("tasks").info("Celery worker logging initialized")


def hash_text(text: str) -> str:
	return hashlib.sha256(text.encode("utf-8")).hexdigest()
