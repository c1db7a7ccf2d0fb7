"""Tests for JobSubmitter validation and the outbound job request."""

import pytest
import requests

from common.errors import SubmissionError, ValidationError
from common.job_schema import JobKind
from conftest import FakeResponse, FakeSession, make_image
from worker.submitter import JobSubmitter, mime_type_for

SYNC_ACK = {"input_image": "https://cdn/in", "output_images": ["https://cdn/1", "https://cdn/2"]}


class TestValidation:

    @pytest.mark.parametrize("size", [(511, 512), (512, 511), (100, 100), (2000, 300)])
    def test_small_images_never_submitted(self, service, request_factory, size):
        session = FakeSession()
        submitter = JobSubmitter(session, service)
        with pytest.raises(ValidationError, match="too small"):
            submitter.submit(request_factory(image_bytes=make_image(*size)))
        assert session.calls == []

    def test_interior_requires_room_type(self, service, request_factory):
        """Scenario A: Interior without room_type is rejected with no network call."""
        session = FakeSession()
        with pytest.raises(ValidationError, match="room_type"):
            JobSubmitter(session, service).submit(request_factory(design_type="Interior", room_type=None))
        assert session.calls == []

    def test_exterior_does_not_need_room_type(self, service, request_factory):
        JobSubmitter(FakeSession(), service).validate(request_factory(design_type="Exterior", room_type=None))

    @pytest.mark.parametrize("design_type,field", [("Exterior", "house_angle"), ("Garden", "garden_type")])
    def test_decor_staging_style_fields(self, service, request_factory, design_type, field):
        req = request_factory(kind=JobKind.DECOR_STAGING, design_type=design_type, room_type=None)
        with pytest.raises(ValidationError, match=field):
            JobSubmitter(FakeSession(), service).validate(req)

    def test_empty_image(self, service, request_factory):
        with pytest.raises(ValidationError):
            JobSubmitter(FakeSession(), service).validate(request_factory(image_bytes=b""))

    def test_unreadable_image_is_passed_through(self, service, request_factory):
        JobSubmitter(FakeSession(), service).validate(request_factory(image_bytes=b"not-an-image"))


class TestSubmit:

    def test_multipart_request(self, service, request_factory):
        session = FakeSession(post=[FakeResponse(200, {"id": "q-123", "status": "IN_QUEUE"})])
        handle = JobSubmitter(session, service).submit(request_factory(custom_instruction="add plants"))

        assert handle.job_id == "q-123"
        assert handle.kind == JobKind.VIRTUAL_STAGING
        [call] = session.calls
        assert call["url"] == "https://svc.example/api/v2/virtual_staging"
        assert call["headers"] == {"Authorization": "Bearer secret-token"}
        form = dict(call["data"])
        assert form == {
            "design_type": "Interior",
            "ai_intervention": "Mid",
            "no_design": "1",
            "design_style": "Modern",
            "room_type": "Living Room",
            "custom_instruction": "add plants",
        }
        name, data, mime = call["files"]["image"]
        assert (name, mime) == ("living.png", "image/png")
        assert data.startswith(b"\x89PNG")

    def test_decor_staging_form(self, service, request_factory):
        session = FakeSession(post=[FakeResponse(200, SYNC_ACK)])
        req = request_factory(kind=JobKind.DECOR_STAGING, design_type="Garden", room_type=None,
                              garden_type="Backyard", custom_instruction="string lights")
        JobSubmitter(session, service).submit(req)
        form = dict(session.calls[0]["data"])
        assert "ai_intervention" not in form
        assert form["garden_type"] == "Backyard"
        assert form["prompt"] == "string lights"
        assert session.calls[0]["url"].endswith("/decor_staging")

    def test_handle_is_immutable(self, service, request_factory):
        session = FakeSession(post=[FakeResponse(200, {"id": "q-1"})])
        handle = JobSubmitter(session, service).submit(request_factory())
        with pytest.raises(Exception):
            handle.job_id = "other"

    def test_transport_failure(self, service, request_factory):
        session = FakeSession(post=[requests.ConnectionError("boom")])
        with pytest.raises(SubmissionError, match="reach"):
            JobSubmitter(session, service).submit(request_factory())

    def test_non_success_status(self, service, request_factory):
        session = FakeSession(post=[FakeResponse(422, "bad image")])
        with pytest.raises(SubmissionError) as exc:
            JobSubmitter(session, service).submit(request_factory())
        assert exc.value.status_code == 422
        assert exc.value.body == "bad image"

    @pytest.mark.parametrize("body", [{"status": "IN_QUEUE"}, "<html>", [1]])
    def test_acknowledgment_without_id(self, service, request_factory, body):
        session = FakeSession(post=[FakeResponse(200, body)])
        with pytest.raises(SubmissionError):
            JobSubmitter(session, service).submit(request_factory())


class TestSynchronousKinds:

    @pytest.mark.parametrize("kind", [JobKind.DECOR_STAGING, JobKind.DECOR_DESIGN])
    def test_outputs_in_acknowledgment(self, service, request_factory, kind):
        session = FakeSession(post=[FakeResponse(200, SYNC_ACK)])
        handle = JobSubmitter(session, service).submit(request_factory(kind=kind))

        assert handle.result is not None
        assert handle.result.output_urls == ["https://cdn/1", "https://cdn/2"]
        assert handle.result.input_image == "https://cdn/in"
        assert handle.result.poll_attempts == 0
        assert handle.result.job_id == handle.job_id
        assert handle.job_id

    def test_nested_outputs_keep_service_id(self, service, request_factory):
        ack = {"id": "b-5", "success": {"original_image": "o", "generated_image": ["g1"]}}
        session = FakeSession(post=[FakeResponse(200, ack)])
        handle = JobSubmitter(session, service).submit(request_factory(kind=JobKind.BEAUTIFUL_REDESIGN))
        assert handle.job_id == "b-5"
        assert handle.result.output_urls == ["g1"]

    def test_synchronous_kind_without_outputs(self, service, request_factory):
        session = FakeSession(post=[FakeResponse(200, {"id": "d-1"})])
        with pytest.raises(SubmissionError, match="no output images"):
            JobSubmitter(session, service).submit(request_factory(kind=JobKind.DECOR_DESIGN))

    def test_failed_acknowledgment(self, service, request_factory):
        session = FakeSession(post=[FakeResponse(200, {"id": "q-1", "status": "failed"})])
        with pytest.raises(SubmissionError) as exc:
            JobSubmitter(session, service).submit(request_factory())
        assert exc.value.body == {"id": "q-1", "status": "failed"}

    def test_queued_kind_has_no_result(self, service, request_factory):
        session = FakeSession(post=[FakeResponse(200, {"id": "q-1", "status": "IN_QUEUE"})])
        assert JobSubmitter(session, service).submit(request_factory()).result is None


class TestBeautifulRedesign:

    def test_form(self, service, request_factory):
        session = FakeSession(post=[FakeResponse(200, SYNC_ACK)])
        req = request_factory(kind=JobKind.BEAUTIFUL_REDESIGN, keep_structural_element=True,
                              custom_instruction="warmer light")
        JobSubmitter(session, service).submit(req)

        call = session.calls[0]
        assert call["url"] == "https://svc.example/api/v2/beautiful_redesign"
        form = dict(call["data"])
        assert form["ai_intervention"] == "Mid"
        assert form["keep_structural_element"] == "true"
        assert form["prompt"] == "warmer light"
        assert "custom_instruction" not in form

    def test_interior_requires_room_type(self, service, request_factory):
        with pytest.raises(ValidationError, match="room_type"):
            JobSubmitter(FakeSession(), service).validate(
                request_factory(kind=JobKind.BEAUTIFUL_REDESIGN, room_type=None)
            )


class TestFurnitureRemoval:

    def test_mask_is_required(self, service, request_factory):
        session = FakeSession()
        with pytest.raises(ValidationError, match="masked_image"):
            JobSubmitter(session, service).submit(request_factory(kind=JobKind.FURNITURE_REMOVAL))
        assert session.calls == []

    def test_multipart_carries_mask(self, service, request_factory):
        mask = make_image(fmt="PNG")
        session = FakeSession(post=[FakeResponse(200, SYNC_ACK)])
        req = request_factory(kind=JobKind.FURNITURE_REMOVAL, file_name="den.jpg", image_bytes=make_image(fmt="JPEG"),
                              room_type=None, masked_image_bytes=mask, masked_file_name="den_mask.png")
        handle = JobSubmitter(session, service).submit(req)

        call = session.calls[0]
        assert call["url"] == "https://svc.example/api/v2/furniture_removal"
        assert call["data"] == []
        assert call["files"]["image"][0] == "den.jpg"
        assert call["files"]["image"][2] == "image/jpeg"
        assert call["files"]["masked_image"] == ("den_mask.png", mask, "image/png")
        assert handle.result.output_urls == ["https://cdn/1", "https://cdn/2"]


def test_mime_types():
    assert mime_type_for("a.JPG") == "image/jpeg"
    assert mime_type_for("a.webp") == "image/webp"
    assert mime_type_for("noext") == "image/jpeg"
