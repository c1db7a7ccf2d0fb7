"""
Normalizes status-endpoint bodies into JobStatusSnapshot.

The processing service has answered its status endpoint with several
different JSON layouts over time. Each known layout is one entry in SHAPES:
a name, a predicate that recognizes it and an extractor that pulls out the
status text and outputs. Entries are tried in order; the first match wins.
Anything unrecognized resolves to JobState.UNKNOWN, which the poller treats
as non-terminal.
"""

import json
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple, Union

from common.job_schema import JobState, JobStatusSnapshot
from common.logger import logger

FAILURE_KEYWORDS = ("failed", "error")
QUEUED_KEYWORDS = ("queue", "pending", "starting", "waiting", "submitted")
RUNNING_KEYWORDS = ("progress", "running", "processing", "started")


class Extracted(NamedTuple):
    status: Optional[str]
    input_image: Optional[str]
    outputs: List[str]
    worker_id: Optional[str] = None
    delay_time: Optional[int] = None


class Shape(NamedTuple):
    name: str
    matches: Callable[[Dict[str, Any]], bool]
    extract: Callable[[Dict[str, Any]], Extracted]


def _nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def _url_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if _nonempty_str(v)]


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _nested_outputs(body: Dict[str, Any]) -> List[str]:
    success = body.get("success")
    return _url_list(success.get("generated_image")) if isinstance(success, dict) else []


def _direct_outputs(body: Dict[str, Any]) -> List[str]:
    return _url_list(body.get("output_images"))


def _has_outputs(body: Dict[str, Any]) -> bool:
    """True when either output layout (shape 3 or 4) carries at least one URL."""
    return bool(_nested_outputs(body) or _direct_outputs(body))


# 1. {"data": {"id": ..., "status": "IN_QUEUE", "workerId": ..., "delayTime": ...}, "http_status": 200}
def _is_queue_wrapper(body: Dict[str, Any]) -> bool:
    data = body.get("data")
    return isinstance(data, dict) and _nonempty_str(data.get("status"))


def _extract_queue_wrapper(body: Dict[str, Any]) -> Extracted:
    data = body["data"]
    worker_id = data.get("workerId")
    return Extracted(
        status=data["status"],
        input_image=None,
        outputs=[],
        worker_id=str(worker_id) if worker_id is not None else None,
        delay_time=_as_int(data.get("delayTime")),
    )


# 2. {"status": "starting", "created_at": ..., "started_at": ...}
def _is_simple_status(body: Dict[str, Any]) -> bool:
    return _nonempty_str(body.get("status")) and not _has_outputs(body)


def _extract_simple_status(body: Dict[str, Any]) -> Extracted:
    return Extracted(status=body["status"], input_image=None, outputs=[])


# 3. {"success": {"original_image": ..., "generated_image": [...]}}
def _is_nested_success(body: Dict[str, Any]) -> bool:
    return bool(_nested_outputs(body))


def _extract_nested_success(body: Dict[str, Any]) -> Extracted:
    status = body.get("status")
    return Extracted(
        status=status if _nonempty_str(status) else None,
        input_image=body["success"].get("original_image"),
        outputs=_nested_outputs(body),
    )


# 4. {"input_image": ..., "output_images": [...]}
def _is_direct(body: Dict[str, Any]) -> bool:
    return _nonempty_str(body.get("input_image")) and bool(_direct_outputs(body))


def _extract_direct(body: Dict[str, Any]) -> Extracted:
    status = body.get("status")
    return Extracted(
        status=status if _nonempty_str(status) else None,
        input_image=body["input_image"],
        outputs=_direct_outputs(body),
    )


SHAPES: Tuple[Shape, ...] = (
    Shape("queue_wrapper", _is_queue_wrapper, _extract_queue_wrapper),
    Shape("simple_status", _is_simple_status, _extract_simple_status),
    Shape("nested_success", _is_nested_success, _extract_nested_success),
    Shape("direct", _is_direct, _extract_direct),
)


def classify_status(status: Optional[str]) -> JobState:
    """Maps a free-form status string onto JobState. Failure keywords win."""
    if not status:
        return JobState.UNKNOWN
    lowered = status.lower()
    if any(k in lowered for k in FAILURE_KEYWORDS):
        return JobState.FAILED
    if any(k in lowered for k in QUEUED_KEYWORDS):
        return JobState.QUEUED
    if any(k in lowered for k in RUNNING_KEYWORDS):
        return JobState.RUNNING
    return JobState.UNKNOWN


def _decode(raw_body: Union[str, bytes, Dict[str, Any], None]) -> Optional[Dict[str, Any]]:
    if isinstance(raw_body, dict):
        return raw_body
    if raw_body is None:
        return None
    if isinstance(raw_body, (bytes, bytearray)):
        raw_body = raw_body.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(raw_body)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


class ResponseSchemaResolver:

    def __init__(self, shapes: Tuple[Shape, ...] = SHAPES):
        self.shapes = shapes

    def resolve(self, raw_body: Union[str, bytes, Dict[str, Any], None]) -> JobStatusSnapshot:
        body = _decode(raw_body)
        if body is None:
            logger.warning("Status response is not a JSON object: %.500s", raw_body)
            return JobStatusSnapshot(state=JobState.UNKNOWN, raw=raw_body)

        for shape in self.shapes:
            if not shape.matches(body):
                continue
            ext = shape.extract(body)
            state = classify_status(ext.status)
            if state != JobState.FAILED and ext.outputs:
                state = JobState.SUCCEEDED
            return JobStatusSnapshot(
                state=state,
                shape=shape.name,
                status_text=ext.status,
                worker_id=ext.worker_id,
                delay_time=ext.delay_time,
                input_image=ext.input_image,
                output_images=ext.outputs if state == JobState.SUCCEEDED else [],
                raw=body,
            )

        logger.warning("Unable to parse status response in any known format: %.500s", body)
        return JobStatusSnapshot(state=JobState.UNKNOWN, raw=body)

