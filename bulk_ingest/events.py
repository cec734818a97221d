import json
import logging

from bulk_ingest.tracing import current_trace_id


def _json_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


pipeline_logger = _json_logger("ingest.pipeline")
request_logger = _json_logger("ingest.request")


def _encode(payload: dict) -> str:
    payload.setdefault("trace_id", current_trace_id())
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def log_event(payload: dict, level: int = logging.INFO) -> None:
    pipeline_logger.log(level, _encode(payload))


def log_request_event(payload: dict, level: int = logging.INFO) -> None:
    request_logger.log(level, _encode(payload))
