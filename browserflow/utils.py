# utils

import base64
import logging


from   datetime import datetime, timezone
from   fastapi  import FastAPI
from   fastapi.middleware.cors import CORSMiddleware
from   typing   import Any, List, Optional


LOGGER_NAME : str = "browserflow"
LOG_FORMAT  : str = "%(asctime)s [%(levelname)s] %(message)s"


_logger = logging.getLogger(LOGGER_NAME)


def setup_logging(level: int = logging.INFO):
	if _logger.handlers:
		_logger.setLevel(level)
		return
	handler = logging.StreamHandler()
	handler.setFormatter(logging.Formatter(LOG_FORMAT))
	_logger.addHandler(handler)
	_logger.setLevel(level)


def log_print(*args: Any, level: int = logging.INFO):
	message = " ".join(str(a) for a in args)
	_logger.log(level, message)


def get_now() -> datetime:
	return datetime.now(timezone.utc)


def get_now_str() -> str:
	return get_now().isoformat()


def serialize_result(value: Any) -> Any:
	"""Convert a value into something json.dumps accepts."""
	if value is None or isinstance(value, (bool, int, float, str)):
		return value
	if isinstance(value, (bytes, bytearray)):
		return base64.b64encode(bytes(value)).decode("ascii")
	if isinstance(value, datetime):
		return value.isoformat()
	if isinstance(value, dict):
		return {str(k): serialize_result(v) for k, v in value.items()}
	if isinstance(value, (list, tuple, set)):
		return [serialize_result(v) for v in value]
	if hasattr(value, "model_dump"):
		return serialize_result(value.model_dump(mode="json", by_alias=True))
	return str(value)


def add_middleware(app: FastAPI, origins: Optional[List[str]] = None):
	app.add_middleware(
		CORSMiddleware,
		allow_origins     = origins or ["*"],
		allow_credentials = True,
		allow_methods     = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE", "OPTIONS"],
		allow_headers     = ["*"],
	)
