import threading
import time
from typing import Callable, Optional

import requests

from common.errors import JobCancelledError, PollTimeoutError, RemoteTerminalFailure
from common.job_schema import JobHandle, JobResult, JobState, JobStatusSnapshot, PollSettings, ServiceSettings
from common.logger import logger
from worker.resolver import ResponseSchemaResolver


class StatusPoller:
    """
    Polls the status endpoint of one job until it reaches a terminal state.

    Each tick waits poll.interval_seconds, issues one GET and resolves the
    body. At most poll.max_attempts requests are made. A successful job
    returns a JobResult; a failed one raises RemoteTerminalFailure; running
    out of attempts (or past the caller's deadline) raises PollTimeoutError.
    """

    def __init__(
        self,
        session: requests.Session,
        service: Optional[ServiceSettings] = None,
        poll: Optional[PollSettings] = None,
        resolver: Optional[ResponseSchemaResolver] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.service = service or ServiceSettings()
        self.poll = poll or PollSettings()
        self.resolver = resolver or ResponseSchemaResolver()
        self.sleep = sleep
        self.clock = clock

    def _wait(self, cancel_event: Optional[threading.Event]) -> bool:
        """
        Waits one interval. Returns True if the job was cancelled meanwhile.

        Without an injected sleep the wait blocks on the cancel event, so a
        cancel wakes it early. An injected sleep is always used when given,
        and the event is checked once it returns.
        """
        interval = self.poll.interval_seconds
        if self.sleep is None:
            return (cancel_event or threading.Event()).wait(interval)
        self.sleep(interval)
        return cancel_event is not None and cancel_event.is_set()

    def fetch_status(self, handle: JobHandle) -> JobStatusSnapshot:
        url = self.service.status_url(handle.kind, handle.job_id)
        try:
            resp = self.session.get(url, headers=self.service.auth_headers(), timeout=self.service.request_timeout)
        except requests.RequestException as e:
            logger.warning("Status request for %s failed: %s", handle.job_id, e)
            return JobStatusSnapshot(state=JobState.UNKNOWN, raw=str(e))

        logger.debug("Raw status response: %s", resp.text)
        if not resp.ok:
            logger.warning("Status endpoint returned %s for %s", resp.status_code, handle.job_id)
            return JobStatusSnapshot(state=JobState.UNKNOWN, raw=resp.text)
        return self.resolver.resolve(resp.text)

    def poll_to_terminal(
        self,
        handle: JobHandle,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> JobResult:
        """deadline is an absolute value of self.clock()."""
        max_attempts = self.poll.max_attempts
        last: Optional[JobStatusSnapshot] = None
        attempt = 0

        while attempt < max_attempts:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(f"Polling of {handle.job_id} cancelled", attempts=attempt)
            if deadline is not None and self.clock() + self.poll.interval_seconds > deadline:
                logger.warning("Deadline reached for %s after %d attempts", handle.job_id, attempt)
                break

            if self._wait(cancel_event):
                raise JobCancelledError(f"Polling of {handle.job_id} cancelled", attempts=attempt)

            attempt += 1
            logger.info("Checking status of %s (attempt %d/%d)", handle.job_id, attempt, max_attempts)
            last = self.fetch_status(handle)

            if last.state == JobState.SUCCEEDED:
                logger.info("Job %s complete, %d outputs", handle.job_id, len(last.output_images))
                return JobResult(
                    job_id=handle.job_id,
                    input_image=last.input_image,
                    output_urls=last.output_images,
                    poll_attempts=attempt,
                )
            if last.state == JobState.FAILED:
                logger.error("Job %s failed remotely: %s", handle.job_id, last.status_text)
                raise RemoteTerminalFailure(
                    f"Processing failed with status {last.status_text!r}", raw_payload=last.raw
                )

            logger.info(
                "Job %s %s (shape=%s, worker=%s, delay=%s)",
                handle.job_id, last.state.value, last.shape, last.worker_id, last.delay_time,
            )

        raise PollTimeoutError(
            f"No terminal status for {handle.job_id} after {attempt} attempts",
            attempts=attempt,
            raw_payload=last.raw if last else None,
        )
