"""Shared fixtures: fake HTTP sessions, fake storage and generated images."""

import io
import json
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pytest
import requests
from PIL import Image

from common.job_schema import JobRequest, PipelineSettings, PollSettings, ServiceSettings
from worker.artifacts import ArtifactFetcher, ArtifactPersister
from worker.orchestrator import JobOrchestrator
from worker.poller import StatusPoller
from worker.submitter import JobSubmitter


def make_image(width: int = 512, height: int = 512, fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 180, 160)).save(buf, format=fmt)
    return buf.getvalue()


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, content: Optional[bytes] = None):
        self.status_code = status_code
        if content is not None:
            self.content = content
            self.text = content.decode("latin-1")
        elif isinstance(body, (dict, list)):
            self.text = json.dumps(body)
            self.content = self.text.encode("utf-8")
        else:
            self.text = body or ""
            self.content = self.text.encode("utf-8")

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        return json.loads(self.text)

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    """
    Records every call. Responses are queued per method; an Exception
    instance in the queue is raised instead of returned.
    """

    def __init__(self, post: Optional[List[Any]] = None, get: Optional[List[Any]] = None,
                 get_by_url: Optional[Dict[str, Any]] = None):
        self.post_responses = list(post or [])
        self.get_responses = list(get or [])
        self.get_by_url = dict(get_by_url or {})
        self.calls: List[Dict[str, Any]] = []

    def _next(self, queue: List[Any]):
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, **kwargs):
        self.calls.append({"method": "POST", "url": url, **kwargs})
        return self._next(self.post_responses)

    def get(self, url, **kwargs):
        self.calls.append({"method": "GET", "url": url, **kwargs})
        if url in self.get_by_url:
            item = self.get_by_url[url]
            if isinstance(item, Exception):
                raise item
            return item
        return self._next(self.get_responses)

    def calls_for(self, method: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method]


class FakeStorage:
    """In-memory stand-in for StorageClient."""

    def __init__(self, fail_names: Optional[List[str]] = None, raise_names: Optional[List[str]] = None):
        self.objects: Dict[str, bytes] = {}
        self.fail_names = fail_names or []
        self.raise_names = raise_names or []
        self.signed: List[tuple] = []

    def upload(self, tenant_id, directory, filename, data, content_type):
        if any(n in filename for n in self.raise_names):
            raise IOError("disk full")
        if any(n in filename for n in self.fail_names):
            return False
        self.objects[f"{tenant_id.lower()}/{directory}/{filename}"] = data
        return True

    def generate_time_bounded_url(self, full_path: str, ttl: timedelta) -> str:
        self.signed.append((full_path, ttl))
        return f"https://store.example/{full_path}?ttl={int(ttl.total_seconds())}"


SERVICE = ServiceSettings(base_url="https://svc.example/api/v2", api_token="secret-token", request_timeout=5)


@pytest.fixture
def service() -> ServiceSettings:
    return SERVICE


@pytest.fixture
def image_bytes() -> bytes:
    return make_image()


@pytest.fixture
def request_factory(image_bytes):
    def _make(**overrides) -> JobRequest:
        fields = dict(
            tenant_id="Tenant-1",
            image_bytes=image_bytes,
            file_name="living.png",
            room_type="Living Room",
            directory="virtual-staging",
        )
        fields.update(overrides)
        return JobRequest(**fields)
    return _make


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def build_orchestrator(service, sleeps):
    """Wire an orchestrator from fakes; returns (orchestrator, api_session, download_session, storage)."""

    def _build(post=None, status=None, downloads=None, storage=None, max_attempts=5, max_workers=1):
        api = FakeSession(post=post, get=status)
        dl = FakeSession(get_by_url=downloads or {})
        store = storage or FakeStorage()
        orchestrator = JobOrchestrator(
            submitter=JobSubmitter(api, service, PipelineSettings()),
            poller=StatusPoller(
                api, service, PollSettings(interval_seconds=2, max_attempts=max_attempts), sleep=sleeps.append
            ),
            fetcher=ArtifactFetcher(dl, timeout=5, max_workers=max_workers),
            persister=ArtifactPersister(store, ttl=timedelta(hours=24), max_workers=max_workers),
        )
        return orchestrator, api, dl, store

    return _build
