import threading
import time
from datetime import timedelta
from typing import Any, Optional

import requests

from common.errors import (
    JobCancelledError,
    PollTimeoutError,
    RemoteTerminalFailure,
    SubmissionError,
    ValidationError,
)
from common.job_schema import (
    ErrorKind,
    JobRequest,
    OrchestrationOutcome,
    PipelineSettings,
    PollSettings,
    ServiceSettings,
)
from common.logger import logger
from common.storage import StorageClient
from worker.artifacts import ArtifactFetcher, ArtifactPersister
from worker.poller import StatusPoller
from worker.submitter import KIND_PROFILES, JobSubmitter


class JobOrchestrator:
    """
    Runs one transformation job end to end:
    submit -> poll to terminal -> fetch outputs -> persist outputs.
    Polling is skipped when the submission itself returned the outputs.

    Only validation, submission, remote failure, timeout and cancellation
    fail the outcome. Individual outputs that cannot be fetched or stored
    are listed in outcome.failures and counted in failed_count.
    """

    def __init__(
        self,
        submitter: JobSubmitter,
        poller: StatusPoller,
        fetcher: ArtifactFetcher,
        persister: ArtifactPersister,
        clock=time.monotonic,
    ):
        self.submitter = submitter
        self.poller = poller
        self.fetcher = fetcher
        self.persister = persister
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        storage: StorageClient,
        service: Optional[ServiceSettings] = None,
        poll: Optional[PollSettings] = None,
        pipeline: Optional[PipelineSettings] = None,
        api_session: Optional[requests.Session] = None,
        download_session: Optional[requests.Session] = None,
    ) -> "JobOrchestrator":
        service = service or ServiceSettings()
        pipeline = pipeline or PipelineSettings()
        api_session = api_session or requests.Session()
        download_session = download_session or requests.Session()
        if download_session is api_session:
            raise ValueError("artifact downloads need a session separate from the service session")

        return cls(
            submitter=JobSubmitter(api_session, service, pipeline),
            poller=StatusPoller(api_session, service, poll),
            fetcher=ArtifactFetcher(
                download_session, timeout=service.request_timeout, max_workers=pipeline.fetch_max_workers
            ),
            persister=ArtifactPersister(
                storage, ttl=timedelta(hours=pipeline.url_ttl_hours), max_workers=pipeline.fetch_max_workers
            ),
        )

    def _failed(
        self,
        request: JobRequest,
        started: float,
        kind: ErrorKind,
        error: Exception,
        job_id: Optional[str] = None,
        raw_payload: Any = None,
        poll_attempts: int = 0,
    ) -> OrchestrationOutcome:
        return OrchestrationOutcome(
            success=False,
            tenant_id=request.tenant_id,
            kind=request.kind,
            job_id=job_id,
            timed_out=kind == ErrorKind.TIMEOUT,
            error_kind=kind,
            error_message=str(error),
            raw_payload=raw_payload,
            poll_attempts=poll_attempts,
            processing_time_seconds=round(self.clock() - started, 2),
        )

    def run(
        self,
        request: JobRequest,
        cancel_event: Optional[threading.Event] = None,
        deadline_seconds: Optional[float] = None,
    ) -> OrchestrationOutcome:
        started = self.clock()
        deadline = self.poller.clock() + deadline_seconds if deadline_seconds is not None else None
        logger.info("%s triggered for tenant %s (%s)", request.kind.value, request.tenant_id, request.file_name)

        try:
            handle = self.submitter.submit(request)
        except ValidationError as e:
            logger.error("Validation failed: %s", e)
            return self._failed(request, started, ErrorKind.VALIDATION, e)
        except SubmissionError as e:
            logger.error("Submission failed: %s", e)
            return self._failed(request, started, ErrorKind.SUBMISSION, e, raw_payload=e.body)

        result = handle.result
        try:
            if result is None:
                result = self.poller.poll_to_terminal(handle, cancel_event=cancel_event, deadline=deadline)
        except RemoteTerminalFailure as e:
            return self._failed(
                request, started, ErrorKind.REMOTE_FAILURE, e, handle.job_id, raw_payload=e.raw_payload
            )
        except PollTimeoutError as e:
            logger.error("Timeout waiting for %s: %s", handle.job_id, e)
            return self._failed(
                request, started, ErrorKind.TIMEOUT, e, handle.job_id,
                raw_payload=e.raw_payload, poll_attempts=e.attempts,
            )
        except JobCancelledError as e:
            logger.warning("Job %s cancelled by caller", handle.job_id)
            return self._failed(request, started, ErrorKind.CANCELLED, e, handle.job_id, poll_attempts=e.attempts)

        urls = result.output_urls
        logger.info("Saving %d output images for %s", len(urls), handle.job_id)
        fetched = self.fetcher.fetch_all(urls)
        persisted, failures = self.persister.persist_all(
            fetched,
            tenant_id=request.tenant_id,
            directory=request.directory,
            base_name=request.artifact_base_name,
            tag=KIND_PROFILES[request.kind].filename_tag,
        )

        outcome = OrchestrationOutcome(
            success=True,
            tenant_id=request.tenant_id,
            kind=request.kind,
            job_id=handle.job_id,
            input_image=result.input_image,
            output_images=urls,
            persisted=persisted,
            failures=failures,
            requested_count=len(urls),
            persisted_count=len(persisted),
            failed_count=len(urls) - len(persisted),
            poll_attempts=result.poll_attempts,
            processing_time_seconds=round(self.clock() - started, 2),
        )
        logger.info(
            "%s completed in %.2fs: %d designs, %d saved, %d failed",
            request.kind.value, outcome.processing_time_seconds,
            outcome.requested_count, outcome.persisted_count, outcome.failed_count,
        )
        return outcome
