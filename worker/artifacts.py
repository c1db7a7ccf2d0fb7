from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Tuple

import requests

from common.errors import ArtifactFetchError, ArtifactPersistError
from common.job_schema import ArtifactFailure, FetchResult, PersistedArtifact
from common.logger import logger
from common.storage import StorageClient, object_key


def _map(fn: Callable, items: Sequence, max_workers: int) -> List:
    """Ordered map; runs on a thread pool when max_workers > 1."""
    if max_workers <= 1 or len(items) <= 1:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as pool:
        return list(pool.map(fn, items))


class ArtifactFetcher:
    """
    Downloads generated images.

    Result URLs are pre-signed by the processing service, so the session
    used here must be a different one from the submission session and never
    carries its bearer token.
    """

    def __init__(self, session: requests.Session, timeout: float = 60.0, max_workers: int = 1):
        self.session = session
        self.timeout = timeout
        self.max_workers = max_workers

    def fetch(self, url: str) -> bytes:
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise ArtifactFetchError(str(e)) from e
        if not resp.content:
            raise ArtifactFetchError("empty response body")
        return resp.content

    def _fetch_one(self, item: Tuple[int, str]) -> FetchResult:
        index, url = item
        try:
            data = self.fetch(url)
        except Exception as e:
            logger.error("Error downloading output image %d from %s: %s", index, url, e)
            return FetchResult(index=index, url=url, error=str(e))
        logger.info("Downloaded output image %d (%d bytes)", index, len(data))
        return FetchResult(index=index, url=url, data=data)

    def fetch_all(self, urls: Sequence[str]) -> List[FetchResult]:
        """One FetchResult per url, 1-based index, in input order."""
        return _map(self._fetch_one, list(enumerate(urls, start=1)), self.max_workers)


class ArtifactPersister:

    def __init__(
        self,
        storage: StorageClient,
        ttl: timedelta = timedelta(hours=24),
        max_workers: int = 1,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.storage = storage
        self.ttl = ttl
        self.max_workers = max_workers
        self.now = now

    def filename(self, base_name: str, tag: str, index: int) -> str:
        timestamp = self.now().strftime("%Y%m%d-%H%M%S")
        return f"{base_name}_{tag}_{timestamp}_{index}.png"

    def persist(
        self,
        data: bytes,
        tenant_id: str,
        directory: str,
        base_name: str,
        index: int,
        tag: str = "staged",
        source_url: str = "",
    ) -> PersistedArtifact:
        name = self.filename(base_name, tag, index)
        try:
            uploaded = self.storage.upload(tenant_id, directory, name, data, "image/png")
        except Exception as e:
            raise ArtifactPersistError(f"upload of {name} raised: {e}") from e
        if not uploaded:
            raise ArtifactPersistError(f"upload of {name} failed")

        full_path = object_key(tenant_id, directory, name)
        try:
            url = self.storage.generate_time_bounded_url(full_path, self.ttl)
        except Exception as e:
            raise ArtifactPersistError(f"could not sign {full_path}: {e}") from e

        logger.info("Saved output image %d to %s", index, full_path)
        return PersistedArtifact(
            index=index,
            source_url=source_url,
            storage_path=full_path,
            access_url=url,
            expires_at=self.now() + self.ttl,
        )

    def persist_all(
        self,
        fetched: Sequence[FetchResult],
        tenant_id: str,
        directory: str,
        base_name: str,
        tag: str = "staged",
    ) -> Tuple[List[PersistedArtifact], List[ArtifactFailure]]:
        """Persists every successfully fetched item; failures are returned, not raised."""

        def _persist_one(item: FetchResult):
            try:
                return self.persist(item.data, tenant_id, directory, base_name, item.index, tag, item.url)
            except ArtifactPersistError as e:
                logger.warning("Failed to persist output image %d: %s", item.index, e)
                return ArtifactFailure(index=item.index, url=item.url, stage="persist", error=str(e))

        persisted: List[PersistedArtifact] = []
        failures: List[ArtifactFailure] = [
            ArtifactFailure(index=f.index, url=f.url, stage="fetch", error=f.error or "no data")
            for f in fetched if not f.ok
        ]
        for result in _map(_persist_one, [f for f in fetched if f.ok], self.max_workers):
            if isinstance(result, PersistedArtifact):
                persisted.append(result)
            else:
                failures.append(result)
        failures.sort(key=lambda f: f.index)
        return persisted, failures
