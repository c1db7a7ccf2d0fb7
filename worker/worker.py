import json
import sys
from pathlib import Path
from typing import Optional

import click

from common.config import GCS_BUCKET, STORAGE_BACKEND
from common.job_schema import JobKind, JobRequest, OrchestrationOutcome, PollSettings
from common.logger import logger
from common.storage import StorageClient
from worker.orchestrator import JobOrchestrator


def load_source_image(storage: StorageClient, image: Optional[str], source_path: Optional[str],
                      image_url: Optional[str]) -> bytes:
    """Source image from a local file, a tenant store path, or a plain URL."""
    if image:
        return Path(image).read_bytes()
    if source_path:
        return storage.download(source_path)
    if image_url:
        return storage.download_url(image_url)
    raise click.UsageError("one of --image, --source-path or --image-url is required")


def process_job(orchestrator: JobOrchestrator, request: JobRequest,
                deadline_seconds: Optional[float] = None) -> OrchestrationOutcome:
    outcome = orchestrator.run(request, deadline_seconds=deadline_seconds)
    if outcome.success:
        logger.info("Processed job %s: %d/%d saved", outcome.job_id, outcome.persisted_count, outcome.requested_count)
    else:
        logger.error("Failed job %s: %s (%s)", outcome.job_id, outcome.error_message, outcome.error_kind.value)
    return outcome


@click.command()
@click.option("--tenant", "tenant_id", required=True, help="Tenant that owns the artifacts.")
@click.option("--image", type=click.Path(exists=True, dir_okay=False), help="Local source image.")
@click.option("--source-path", help="Source image path inside the tenant store, e.g. tenant/photos/a.jpg.")
@click.option("--image-url", help="Source image URL (public or pre-signed).")
@click.option("--file-name", help="File name sent to the service; defaults to the source name.")
@click.option("--kind", type=click.Choice([k.value for k in JobKind]), default=JobKind.VIRTUAL_STAGING.value)
@click.option("--design-type", default="Interior")
@click.option("--ai-intervention", default="Mid")
@click.option("--no-design", type=int, default=1)
@click.option("--design-style", default="Modern")
@click.option("--room-type")
@click.option("--house-angle")
@click.option("--garden-type")
@click.option("--custom-instruction")
@click.option("--keep-structural/--no-keep-structural", default=None)
@click.option("--masked-image", type=click.Path(exists=True, dir_okay=False),
              help="Local mask image, required for furniture_removal.")
@click.option("--directory", default="virtual-staging", help="Output directory under the tenant.")
@click.option("--poll-interval", type=float, help="Seconds between status checks.")
@click.option("--max-attempts", type=int, help="Status checks before giving up.")
@click.option("--deadline", type=float, help="Overall polling deadline in seconds.")
def main(tenant_id, image, source_path, image_url, file_name, kind, design_type, ai_intervention, no_design,
         design_style, room_type, house_angle, garden_type, custom_instruction, keep_structural,
         masked_image, directory, poll_interval, max_attempts, deadline):
    """Run one image transformation job and print the outcome as JSON."""
    storage = StorageClient(backend=STORAGE_BACKEND, gcs_bucket=GCS_BUCKET)
    data = load_source_image(storage, image, source_path, image_url)
    name = file_name or Path(image or source_path or image_url.split("?")[0]).name

    poll = PollSettings()
    overrides = {}
    if poll_interval is not None:
        overrides["interval_seconds"] = poll_interval
    if max_attempts is not None:
        overrides["max_attempts"] = max_attempts
    if overrides:
        poll = PollSettings(**{**poll.model_dump(), **overrides})

    request = JobRequest(
        tenant_id=tenant_id,
        image_bytes=data,
        file_name=name,
        kind=JobKind(kind),
        design_type=design_type,
        ai_intervention=ai_intervention,
        no_design=no_design,
        design_style=design_style,
        room_type=room_type,
        house_angle=house_angle,
        garden_type=garden_type,
        custom_instruction=custom_instruction,
        keep_structural_element=keep_structural,
        masked_image_bytes=Path(masked_image).read_bytes() if masked_image else None,
        masked_file_name=Path(masked_image).name if masked_image else None,
        directory=directory,
    )

    orchestrator = JobOrchestrator.from_settings(storage, poll=poll)
    outcome = process_job(orchestrator, request, deadline_seconds=deadline)
    click.echo(json.dumps(outcome.model_dump(mode="json"), indent=2))
    sys.exit(0 if outcome.success else 1)


if __name__ == "__main__":
    main()
