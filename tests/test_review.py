"""Tests for the review orchestrator job lifecycle."""

import pytest

from conftest import DEFAULT_SCHEMA, integration_doc, write_docs
from vendorgate.config import ReviewSettings
from vendorgate.db import StorageReader, save_uploaded_file
from vendorgate.errors import (
    BackendUnavailable, ConfigurationError, InvalidState, MissingRequiredInput, RemoteCallFailure,
    status_from_message,
)
from vendorgate.review import (
    JOB_STARTED, JobState, ReviewOrchestrator, ReviewStage, classify_job_state,
    extension_from_filename,
)


APPLICATION = {"id": "app-1", "vendor_name": "Acme Trading", "status": "submitted",
               "contact_json": {"email": "ops@acme.test"}}

LICENSE_DOC = {"input_key": "trade_license", "storage_path": "u1/app-1/trade_license/license.pdf",
               "filename": "license.pdf", "mime_type": "application/pdf"}


def _orchestrator(settings, http, audit, upload_dir):
    return ReviewOrchestrator(settings, http, audit, StorageReader(http, upload_dir))


@pytest.fixture
def stored_license(upload_dir):
    save_uploaded_file(LICENSE_DOC["storage_path"], b"%PDF-license", upload_dir)
    return {"trade_license": [LICENSE_DOC]}


class TestStartReview:

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, settings, engine, audit, upload_dir, stored_license):
        async with engine.client() as http:
            run = await _orchestrator(settings, http, audit, upload_dir).start_review(
                APPLICATION, stored_license, actor_user_id="u1")

        assert run.job_execution_id == "job-1"
        assert run.workflow_id == "wf-1"
        assert run.stage == ReviewStage.EXECUTING
        assert run.to_dict() == {"jobExecutionId": "job-1"}
        assert engine.engine_calls() == [
            ("GET", "/workflow/wf-1"),
            ("POST", "/job/initiate"),
            ("POST", "/job/file/upload"),
            ("POST", "/job/execute"),
        ]
        assert engine.last_body("/job/initiate") == {
            "workflowId": "wf-1", "title": "Acme Trading Compliance Review",
            "description": "Vendor compliance validation run"}
        assert engine.last_body("/job/file/upload") == {"fileExtension": ".pdf", "accessScope": "workspace"}
        assert engine.uploads[0]["content"] == b"%PDF-license"
        assert engine.uploads[0]["headers"]["content-type"] == "application/pdf"

        executed = engine.last_body("/job/execute")
        assert executed["jobExecutionId"] == "job-1"
        assert executed["jobPayloadSchemaInstance"] == {
            "trade_license": {"value": "https://files.test/stored/1", "type": "file",
                              "displayName": "Trade License"},
            "contact_information": {"value": {"email": "ops@acme.test"}, "type": "object",
                                    "displayName": "Contact Information"},
            "review_region": {"value": "UAE", "type": "str", "displayName": "review_region"},
        }
        assert executed["jobPayloadSchemaInstance"] == run.payload

        entry = audit.latest("app-1", JOB_STARTED)
        assert entry["meta"] == {"jobExecutionId": "job-1"}
        assert entry["actor_user_id"] == "u1"

    @pytest.mark.asyncio
    async def test_nullable_file_without_document_is_omitted(self, settings, engine, audit,
                                                             upload_dir, stored_license):
        async with engine.client() as http:
            run = await _orchestrator(settings, http, audit, upload_dir).start_review(
                APPLICATION, stored_license)
        assert "vat_certificate" not in run.payload
        assert "vat_certificate" not in engine.last_body("/job/execute")["jobPayloadSchemaInstance"]

    @pytest.mark.asyncio
    async def test_schema_without_files_reaches_execute(self, tmp_path, engine, audit, upload_dir):
        write_docs(tmp_path, {"workflowId": "wf-plain", "jobPayloadSchema": {
            "region": {"type": "str", "value": "UAE"},
            "notes": {"type": "str", "is_nullable": True},
            "tags": {"type": "array", "value": ["a"]},
        }}, integration_doc())
        settings = ReviewSettings(service_key="test-key", docs_dir=tmp_path)
        async with engine.client() as http:
            run = await _orchestrator(settings, http, audit, upload_dir).start_review(
                {"id": "app-2", "status": "submitted"}, {})
        assert run.stage == ReviewStage.EXECUTING
        assert set(run.payload) == {"region", "tags"}
        assert ("POST", "/job/execute") in engine.engine_calls()

    @pytest.mark.asyncio
    async def test_array_of_files_uploads_every_document(self, tmp_path, engine, audit, upload_dir):
        write_docs(tmp_path, {"workflowId": "wf-many", "jobPayloadSchema": {
            "invoices": {"type": "array_files", "display_name": "Invoices"}}}, integration_doc())
        settings = ReviewSettings(service_key="test-key", docs_dir=tmp_path)
        docs = {"invoices": [
            {"input_key": "invoices", "storage_path": "https://files.test/a.pdf", "filename": "a.pdf"},
            {"input_key": "invoices", "storage_path": "https://files.test/b.png", "filename": "b.png",
             "mime_type": "image/png"},
        ]}
        async with engine.client() as http:
            run = await _orchestrator(settings, http, audit, upload_dir).start_review(
                {"id": "app-3", "status": "submitted"}, docs)
        assert run.payload["invoices"]["value"] == ["https://files.test/stored/1",
                                                    "https://files.test/stored/2"]
        assert [u["content"] for u in engine.uploads] == [b"%PDF-external", b"%PDF-external"]
        assert engine.uploads[0]["headers"]["content-type"] == "application/octet-stream"
        assert engine.last_body("/job/file/upload")["fileExtension"] == ".png"

    @pytest.mark.asyncio
    async def test_two_runs_start_two_jobs(self, settings, engine, audit, upload_dir, stored_license):
        async with engine.client() as http:
            orchestrator = _orchestrator(settings, http, audit, upload_dir)
            first = await orchestrator.start_review(APPLICATION, stored_license)
            second = await orchestrator.start_review(APPLICATION, stored_license)
            assert first.job_execution_id != second.job_execution_id
            assert orchestrator.get_latest_job_execution_id("app-1") == second.job_execution_id

    @pytest.mark.asyncio
    async def test_disabled_capability_fails_before_any_call(self, settings, engine, audit, upload_dir):
        settings = ReviewSettings(service_key="", docs_dir=settings.docs_dir)
        async with engine.client() as http:
            with pytest.raises(BackendUnavailable):
                await _orchestrator(settings, http, audit, upload_dir).start_review(APPLICATION, {})
        assert engine.requests == []

    @pytest.mark.asyncio
    async def test_draft_application_is_rejected(self, settings, engine, audit, upload_dir):
        async with engine.client() as http:
            with pytest.raises(InvalidState):
                await _orchestrator(settings, http, audit, upload_dir).start_review(
                    {**APPLICATION, "status": "draft"}, {})
        assert engine.requests == []

    @pytest.mark.asyncio
    async def test_missing_workflow_id_is_configuration_error(self, tmp_path, engine, audit, upload_dir):
        write_docs(tmp_path, {"jobPayloadSchema": {}}, integration_doc())
        settings = ReviewSettings(service_key="test-key", docs_dir=tmp_path)
        async with engine.client() as http:
            with pytest.raises(ConfigurationError):
                await _orchestrator(settings, http, audit, upload_dir).start_review(APPLICATION, {})

    @pytest.mark.asyncio
    async def test_workflow_override_wins(self, settings, engine, audit, upload_dir, stored_license):
        settings = ReviewSettings(service_key="test-key", docs_dir=settings.docs_dir,
                                  workflow_id="wf-override")
        async with engine.client() as http:
            run = await _orchestrator(settings, http, audit, upload_dir).start_review(
                APPLICATION, stored_license)
        assert run.workflow_id == "wf-override"
        assert engine.engine_calls()[0] == ("GET", "/workflow/wf-override")

    @pytest.mark.asyncio
    async def test_unknown_workflow_fails_fast(self, settings, engine, audit, upload_dir):
        engine.failures[("engine.test", "/workflow/wf-1")] = (404, "no such workflow")
        async with engine.client() as http:
            with pytest.raises(RemoteCallFailure) as info:
                await _orchestrator(settings, http, audit, upload_dir).start_review(APPLICATION, {})
        assert info.value.status_code == 404
        assert status_from_message(str(info.value)) == 404
        assert engine.engine_calls() == [("GET", "/workflow/wf-1")]

    @pytest.mark.asyncio
    async def test_missing_required_file(self, settings, engine, audit, upload_dir):
        async with engine.client() as http:
            with pytest.raises(MissingRequiredInput, match="Trade License"):
                await _orchestrator(settings, http, audit, upload_dir).start_review(APPLICATION, {})
        assert ("POST", "/job/execute") not in engine.engine_calls()
        assert audit.latest("app-1", JOB_STARTED) is None

    @pytest.mark.asyncio
    async def test_missing_contact_data(self, settings, engine, audit, upload_dir, stored_license):
        async with engine.client() as http:
            with pytest.raises(MissingRequiredInput, match="Contact Information"):
                await _orchestrator(settings, http, audit, upload_dir).start_review(
                    {**APPLICATION, "contact_json": {}}, stored_license)

    @pytest.mark.asyncio
    async def test_missing_required_primitive(self, tmp_path, engine, audit, upload_dir):
        write_docs(tmp_path, {"workflowId": "wf-p", "jobPayloadSchema": {
            "region": {"type": "str", "display_name": "Region"}}}, integration_doc())
        settings = ReviewSettings(service_key="test-key", docs_dir=tmp_path)
        async with engine.client() as http:
            with pytest.raises(MissingRequiredInput, match="Region"):
                await _orchestrator(settings, http, audit, upload_dir).start_review(APPLICATION, {})

    @pytest.mark.asyncio
    async def test_upload_failure_aborts_before_execute(self, settings, engine, audit, upload_dir,
                                                         stored_license):
        engine.failures[("uploads.test", "/put/1")] = (403, "expired")
        async with engine.client() as http:
            with pytest.raises(RemoteCallFailure) as info:
                await _orchestrator(settings, http, audit, upload_dir).start_review(
                    APPLICATION, stored_license)
        assert info.value.status_code == 403
        assert ("POST", "/job/execute") not in engine.engine_calls()
        assert audit.latest("app-1", JOB_STARTED) is None


class TestPolling:

    def test_no_job_started(self, settings, audit, upload_dir):
        orchestrator = _orchestrator(settings, None, audit, upload_dir)
        assert orchestrator.get_latest_job_execution_id("app-1") is None

    def test_latest_record_wins(self, settings, audit, upload_dir):
        audit.record("app-1", JOB_STARTED, {"jobExecutionId": "job-a"})
        audit.record("app-2", JOB_STARTED, {"jobExecutionId": "job-x"})
        audit.record("app-1", JOB_STARTED, {"jobExecutionId": "job-b"})
        audit.record("app-1", "result_saved", {"jobExecutionId": "job-c"})
        orchestrator = _orchestrator(settings, None, audit, upload_dir)
        assert orchestrator.get_latest_job_execution_id("app-1") == "job-b"

    @pytest.mark.asyncio
    async def test_status_poll_has_no_side_effects(self, settings, engine, audit, upload_dir):
        engine.status = "IN_PROGRESS"
        async with engine.client() as http:
            orchestrator = _orchestrator(settings, http, audit, upload_dir)
            first = await orchestrator.get_status("job-1")
            second = await orchestrator.get_status("job-1")
        assert first.state == second.state == JobState.IN_PROGRESS
        assert first.to_dict()["status"] == "IN_PROGRESS"
        assert engine.engine_calls() == [("GET", "/job/job-1/status")] * 2
        assert audit.store.load()["audit_log"] == []

    @pytest.mark.asyncio
    async def test_fetch_results_normalizes(self, settings, engine, audit, upload_dir):
        async with engine.client() as http:
            raw, normalized = await _orchestrator(settings, http, audit, upload_dir).fetch_results("job-1")
        assert raw == engine.results
        assert normalized == {"license_status": "Mismatch detected"}

    @pytest.mark.asyncio
    async def test_audit_passthrough(self, settings, engine, audit, upload_dir):
        async with engine.client() as http:
            result = await _orchestrator(settings, http, audit, upload_dir).get_audit("job-1")
        assert result == {"events": [{"step": "initiated"}]}

    @pytest.mark.asyncio
    async def test_polling_requires_live_backend(self, tmp_path, engine, audit, upload_dir):
        write_docs(tmp_path, DEFAULT_SCHEMA)
        settings = ReviewSettings(service_key="test-key", docs_dir=tmp_path)
        async with engine.client() as http:
            with pytest.raises(BackendUnavailable):
                await _orchestrator(settings, http, audit, upload_dir).get_status("job-1")

    @pytest.mark.parametrize("text,state", [
        ("QUEUED", JobState.QUEUED),
        ("in progress", JobState.IN_PROGRESS),
        ("COMPLETED", JobState.COMPLETED),
        ("Failed", JobState.FAILED),
        ("", JobState.UNKNOWN),
    ])
    def test_classify_job_state(self, text, state):
        assert classify_job_state(text) == state


def test_extension_from_filename():
    assert extension_from_filename("scan.PNG") == ".PNG"
    assert extension_from_filename("archive.tar.gz") == ".gz"
    assert extension_from_filename("noext") == ".pdf"


def test_status_from_message():
    assert status_from_message("Review engine request failed (422): bad") == 422
    assert status_from_message("connection reset") == 500
