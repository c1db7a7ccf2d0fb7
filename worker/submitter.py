import io
import uuid
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Tuple

import requests
from PIL import Image, UnidentifiedImageError

from common.errors import SubmissionError, ValidationError
from common.job_schema import (
    JobHandle,
    JobKind,
    JobRequest,
    JobResult,
    JobState,
    PipelineSettings,
    ServiceSettings,
)
from common.logger import logger
from worker.resolver import ResponseSchemaResolver


class KindProfile(NamedTuple):
    filename_tag: str
    # design_type (lowercase) -> request field that must be present
    required_fields: Dict[str, str]
    sends_ai_intervention: bool = True
    sends_keep_structural: bool = False
    instruction_field: str = "custom_instruction"
    # answers the POST with the outputs instead of a queued job id
    synchronous: bool = False
    sends_style_fields: bool = True
    requires_mask: bool = False


KIND_PROFILES: Dict[JobKind, KindProfile] = {
    JobKind.VIRTUAL_STAGING: KindProfile("staged", {"interior": "room_type"}),
    JobKind.PERFECT_REDESIGN: KindProfile("redesign", {"interior": "room_type"}, sends_keep_structural=True),
    JobKind.DECOR_DESIGN: KindProfile(
        "decor", {"interior": "room_type"}, sends_ai_intervention=False, synchronous=True
    ),
    JobKind.DECOR_STAGING: KindProfile(
        "decor",
        {"interior": "room_type", "exterior": "house_angle", "garden": "garden_type"},
        sends_ai_intervention=False,
        instruction_field="prompt",
        synchronous=True,
    ),
    JobKind.BEAUTIFUL_REDESIGN: KindProfile(
        "beautiful",
        {"interior": "room_type"},
        sends_keep_structural=True,
        instruction_field="prompt",
        synchronous=True,
    ),
    JobKind.FURNITURE_REMOVAL: KindProfile(
        "removal", {}, sends_style_fields=False, requires_mask=True, synchronous=True
    ),
}

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
}


def mime_type_for(file_name: str) -> str:
    return MIME_TYPES.get(Path(file_name).suffix.lower(), "image/jpeg")


def image_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    """(width, height) of an encoded image, or None when Pillow cannot read it."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("Could not read image dimensions: %s", e)
        return None


class JobSubmitter:
    """
    Validates a JobRequest and posts it to the processing service.

    The session is shared and long-lived; the bearer token is passed per
    request so the session itself never holds it. The acknowledgment goes
    through the same resolver as status bodies: when it already carries
    outputs (synchronous kinds answer this way) the returned handle holds
    the result and no polling is needed.
    """

    def __init__(
        self,
        session: requests.Session,
        service: Optional[ServiceSettings] = None,
        pipeline: Optional[PipelineSettings] = None,
        resolver: Optional[ResponseSchemaResolver] = None,
    ):
        self.session = session
        self.service = service or ServiceSettings()
        self.pipeline = pipeline or PipelineSettings()
        self.resolver = resolver or ResponseSchemaResolver()

    def validate(self, request: JobRequest) -> None:
        """Raises ValidationError without touching the network."""
        if not request.image_bytes:
            raise ValidationError("Source image is empty")

        profile = KIND_PROFILES[request.kind]
        if profile.requires_mask and not request.masked_image_bytes:
            raise ValidationError(f"masked_image is required for {request.kind.value}")
        field = profile.required_fields.get(request.design_type.lower())
        if field and not getattr(request, field):
            raise ValidationError(f"{field} is required for {request.design_type} design type")

        dims = image_dimensions(request.image_bytes)
        if dims is None:
            # unreadable formats are left for the service to judge
            return
        width, height = dims
        minimum = self.pipeline.min_image_dimension
        logger.info("Image dimensions: %dx%d pixels", width, height)
        if width < minimum or height < minimum:
            raise ValidationError(
                f"Image dimensions ({width}x{height}) are too small. "
                f"Minimum required: {minimum}x{minimum} pixels"
            )

    def build_form(self, request: JobRequest) -> List[Tuple[str, str]]:
        profile = KIND_PROFILES[request.kind]
        if not profile.sends_style_fields:
            return []
        form = [("design_type", request.design_type)]
        if profile.sends_ai_intervention:
            form.append(("ai_intervention", request.ai_intervention))
        form.append(("no_design", str(request.no_design)))
        form.append(("design_style", request.design_style))
        if profile.sends_keep_structural and request.keep_structural_element is not None:
            form.append(("keep_structural_element", str(request.keep_structural_element).lower()))
        for name in ("room_type", "house_angle", "garden_type"):
            value = getattr(request, name)
            if value:
                form.append((name, value))
        if request.custom_instruction:
            form.append((profile.instruction_field, request.custom_instruction))
        return form

    def build_files(self, request: JobRequest) -> Dict[str, Tuple[str, bytes, str]]:
        files = {"image": (request.file_name, request.image_bytes, mime_type_for(request.file_name))}
        if request.masked_image_bytes:
            mask_name = request.masked_file_name or f"mask_{request.file_name}"
            files["masked_image"] = (mask_name, request.masked_image_bytes, mime_type_for(mask_name))
        return files

    def submit(self, request: JobRequest) -> JobHandle:
        self.validate(request)

        url = self.service.submit_url(request.kind)
        form = self.build_form(request)
        files = self.build_files(request)
        logger.info("Submitting %s job for tenant %s: %s", request.kind.value, request.tenant_id, dict(form))

        try:
            resp = self.session.post(
                url,
                data=form,
                files=files,
                headers=self.service.auth_headers(),
                timeout=self.service.request_timeout,
            )
        except requests.RequestException as e:
            raise SubmissionError(f"Could not reach processing service: {e}") from e

        if not resp.ok:
            logger.error("Processing service rejected job: %s - %s", resp.status_code, resp.text)
            raise SubmissionError(
                f"Processing service error: {resp.status_code}", status_code=resp.status_code, body=resp.text
            )

        try:
            ack = resp.json()
        except ValueError as e:
            raise SubmissionError("Acknowledgment is not JSON", status_code=resp.status_code, body=resp.text) from e
        if not isinstance(ack, dict):
            raise SubmissionError("Acknowledgment is not a JSON object", status_code=resp.status_code, body=resp.text)

        job_id = ack.get("id")
        snapshot = self.resolver.resolve(ack)
        if snapshot.state == JobState.SUCCEEDED:
            handle_id = str(job_id) if job_id else uuid.uuid4().hex
            logger.info("Job %s answered with %d outputs", handle_id, len(snapshot.output_images))
            return JobHandle(
                job_id=handle_id,
                kind=request.kind,
                result=JobResult(
                    job_id=handle_id, input_image=snapshot.input_image, output_urls=snapshot.output_images
                ),
            )
        if snapshot.state == JobState.FAILED:
            raise SubmissionError(
                f"Processing service reported {snapshot.status_text!r}", status_code=resp.status_code, body=ack
            )
        if KIND_PROFILES[request.kind].synchronous:
            raise SubmissionError(
                f"{request.kind.value} response carries no output images", status_code=resp.status_code, body=ack
            )
        if not job_id:
            raise SubmissionError("Acknowledgment carries no job id", status_code=resp.status_code, body=resp.text)

        handle = JobHandle(job_id=str(job_id), kind=request.kind)
        logger.info("Job queued: %s (status=%s)", handle.job_id, ack.get("status"))
        return handle
