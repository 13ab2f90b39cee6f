import os
from typing import Optional

from utils.errors import ConfigurationError

# Values are read at call time so tests (and reloads) can change the environment.


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
	value = os.getenv(name)
	if value is None or value.strip() == "":
		return default
	return value.strip()


def require_env(name: str) -> str:
	value = get_env(name)
	if value is None:
		raise ConfigurationError(f"{name} is not set")
	return value


def get_float(name: str, default: float) -> float:
	try:
		return float(os.getenv(name, str(default)))
	except ValueError:
		return default


def get_int(name: str, default: int) -> int:
	try:
		return int(os.getenv(name, str(default)))
	except ValueError:
		return default


def storage_bucket() -> str:
	return get_env("STORAGE_BUCKET", "documents")


def app_url() -> Optional[str]:
	url = get_env("APP_URL")
	return url.rstrip("/") if url else None
