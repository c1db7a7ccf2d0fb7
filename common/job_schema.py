from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from common.config import (
    ARTIFACT_URL_TTL_HOURS,
    FETCH_MAX_WORKERS,
    HOMEDESIGNS_AI_TOKEN,
    HOMEDESIGNS_API_URL,
    MIN_IMAGE_DIMENSION,
    POLL_INTERVAL_SECONDS,
    POLL_MAX_ATTEMPTS,
    REQUEST_TIMEOUT_SECONDS,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobKind(str, Enum):
    VIRTUAL_STAGING = "virtual_staging"
    DECOR_STAGING = "decor_staging"
    PERFECT_REDESIGN = "perfect_redesign"
    DECOR_DESIGN = "decor_design"
    BEAUTIFUL_REDESIGN = "beautiful_redesign"
    FURNITURE_REMOVAL = "furniture_removal"


class JobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    SUBMISSION = "submission"
    REMOTE_FAILURE = "remote_failure"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ServiceSettings(BaseModel):
    """Where and how to reach the processing service."""
    base_url: str = HOMEDESIGNS_API_URL
    api_token: str = HOMEDESIGNS_AI_TOKEN
    request_timeout: float = REQUEST_TIMEOUT_SECONDS

    def submit_url(self, kind: JobKind) -> str:
        return f"{self.base_url.rstrip('/')}/{kind.value}"

    def status_url(self, kind: JobKind, job_id: str) -> str:
        return f"{self.base_url.rstrip('/')}/{kind.value}/status_check/{job_id}"

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"}


class PollSettings(BaseModel):
    interval_seconds: float = Field(POLL_INTERVAL_SECONDS, ge=0)
    max_attempts: int = Field(POLL_MAX_ATTEMPTS, ge=1)

    @property
    def horizon_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts


class PipelineSettings(BaseModel):
    min_image_dimension: int = MIN_IMAGE_DIMENSION
    url_ttl_hours: float = Field(ARTIFACT_URL_TTL_HOURS, gt=0)
    fetch_max_workers: int = Field(FETCH_MAX_WORKERS, ge=1)


class JobRequest(BaseModel):
    tenant_id: str
    image_bytes: bytes = Field(repr=False)
    file_name: str
    kind: JobKind = JobKind.VIRTUAL_STAGING

    design_type: str = "Interior"
    ai_intervention: str = "Mid"
    no_design: int = Field(1, ge=1)
    design_style: str = "Modern"
    room_type: Optional[str] = None
    custom_instruction: Optional[str] = None
    house_angle: Optional[str] = None
    garden_type: Optional[str] = None
    keep_structural_element: Optional[bool] = None

    # furniture_removal only: mask marking what to erase
    masked_image_bytes: Optional[bytes] = Field(None, repr=False)
    masked_file_name: Optional[str] = None

    # where persisted artifacts land, relative to the tenant
    directory: str = "virtual-staging"
    base_name: Optional[str] = None

    @property
    def artifact_base_name(self) -> str:
        if self.base_name:
            return self.base_name
        stem, _, _ = self.file_name.rpartition(".")
        return stem or self.file_name


class JobResult(BaseModel):
    job_id: str
    input_image: Optional[str] = None
    output_urls: List[str]
    poll_attempts: int = 0


class JobHandle(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    kind: JobKind
    submitted_at: datetime = Field(default_factory=utcnow)
    # set when the acknowledgment already carried the outputs
    result: Optional[JobResult] = None


class JobStatusSnapshot(BaseModel):
    state: JobState
    shape: Optional[str] = None      # name of the matched response shape
    status_text: Optional[str] = None
    worker_id: Optional[str] = None
    delay_time: Optional[int] = None
    input_image: Optional[str] = None
    output_images: List[str] = []
    raw: Any = None


class FetchResult(BaseModel):
    index: int
    url: str
    data: Optional[bytes] = Field(None, repr=False)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None and self.error is None


class PersistedArtifact(BaseModel):
    index: int
    source_url: str
    storage_path: str
    access_url: str
    expires_at: datetime


class ArtifactFailure(BaseModel):
    index: int
    url: str
    stage: str   # fetch / persist
    error: str


class OrchestrationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    tenant_id: str
    kind: JobKind
    job_id: Optional[str] = None
    input_image: Optional[str] = None
    output_images: List[str] = []
    persisted: List[PersistedArtifact] = []
    failures: List[ArtifactFailure] = []
    requested_count: int = 0
    persisted_count: int = 0
    failed_count: int = 0
    timed_out: bool = False
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    raw_payload: Any = None
    poll_attempts: int = 0
    processing_time_seconds: float = 0.0
    finished_at: datetime = Field(default_factory=utcnow)

    @property
    def access_urls(self) -> List[str]:
        return [a.access_url for a in self.persisted]
