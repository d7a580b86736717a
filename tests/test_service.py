"""End-to-end tests for OrchestrationService against scripted workers."""

import logging

import pytest
from conftest import TODAY, FakeEmbedder, FakeExtractor, FakeGenerator, FakeIndex

from grantflow import OrchestrationService, OrchestratorConfig, RequestType
from grantflow.compliance import ComplianceStatus
from grantflow.core import (
    CircuitState,
    ErrorKind,
    ExtractionError,
    StepStatus,
    UnknownRequestTypeError,
    ValidationError,
    WorkflowStatus,
)
from grantflow.drafting import GeneratedDraft
from grantflow.storage import (
    DuplicateRunError,
    InMemoryRunStore,
    StorageError,
    fingerprint_payload,
)

PDF = b"%PDF-1.7 determination letter"

APPLICATION = {
    "document": PDF,
    "query": "after-school literacy tutoring",
    "profile": {"organization": "Readers United", "categories": ["education"], "region": "CA"},
}


@pytest.mark.asyncio
async def test_compliance_check(service, extractor):
    result = await service.submit_workflow("compliance_check", {"document": PDF})

    assert result.status == WorkflowStatus.SUCCEEDED
    assessment = result.outputs["compliance"]
    assert assessment.status == ComplianceStatus.VALID
    assert assessment.days_until_expiry == 92
    assert extractor.documents == [PDF]


@pytest.mark.asyncio
async def test_compliance_check_with_explicit_reference_date(service):
    from datetime import date

    result = await service.submit_workflow(
        "compliance_check", {"document": PDF, "as_of": date(2025, 5, 20)}
    )

    assert result.outputs["compliance"].status == ComplianceStatus.EXPIRING_SOON


@pytest.mark.asyncio
async def test_compliance_check_fetches_document_reference(service, extractor, blob_store):
    result = await service.submit_workflow(
        RequestType.COMPLIANCE_CHECK, {"document_ref": "docs/irs-letter.pdf"}
    )

    assert result.status == WorkflowStatus.SUCCEEDED
    assert blob_store.calls == 1
    assert extractor.documents == [b"%PDF-1.7 letter"]


@pytest.mark.asyncio
async def test_missing_document_reference_is_not_found(service, extractor):
    result = await service.submit_workflow("compliance_check", {"document_ref": "docs/missing.pdf"})

    assert result.status == WorkflowStatus.FAILED
    assert result.error_for("fetch_document").kind == ErrorKind.NOT_FOUND
    assert result.error_for("fetch_document").attempts == 1
    assert result.error_for("extract_document").kind == ErrorKind.UPSTREAM_FAILURE
    assert extractor.calls == 0


@pytest.mark.asyncio
async def test_compliance_check_requires_a_document(service):
    with pytest.raises(ValidationError, match="document"):
        await service.submit_workflow("compliance_check", {})


@pytest.mark.asyncio
async def test_empty_document_is_validation_failure(service):
    result = await service.submit_workflow("compliance_check", {"document": b""})

    assert result.status == WorkflowStatus.FAILED
    assert result.error_for("extract_document").kind == ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_grant_search(service, generator):
    result = await service.submit_workflow(
        "grant_search", {"query": "literacy", "profile": {"categories": ["education"]}}
    )

    assert result.status == WorkflowStatus.SUCCEEDED
    assert result.outputs["grants"].ids() == ["g01", "g02", "g03", "g04", "g05"]
    assert generator.calls == 0


@pytest.mark.asyncio
async def test_grant_application_happy_path(service, generator):
    result = await service.submit_workflow("grant_application", APPLICATION)

    assert result.status == WorkflowStatus.SUCCEEDED
    draft = result.outputs["draft"]
    assert isinstance(draft, GeneratedDraft)
    assert draft.candidate_id == "g01"
    assert result.outputs["compliance"].status == ComplianceStatus.VALID
    assert "Readers United" in generator.prompts[0]


@pytest.mark.asyncio
async def test_expired_document_still_delivers_shortlist(service, extractor, generator):
    extractor.fields = {"Expiry Date": "2025-02-24"}

    result = await service.submit_workflow("grant_application", APPLICATION)

    assert result.status == WorkflowStatus.PARTIALLY_SUCCEEDED
    assert result.outputs["compliance"].status == ComplianceStatus.EXPIRED
    assert len(result.outputs["grants"]) == 5
    assert "draft" not in result.outputs
    assert result.error_for("clear_compliance").kind == ErrorKind.BUSINESS_RULE
    assert result.error_for("draft_application").kind == ErrorKind.UPSTREAM_FAILURE
    assert result.step_statuses["draft_application"] == StepStatus.SKIPPED
    assert generator.calls == 0


@pytest.mark.asyncio
async def test_unknown_request_type(service, run_store):
    with pytest.raises(UnknownRequestTypeError, match="grant_audit"):
        await service.submit_workflow("grant_audit", {})

    assert await run_store.list_run_ids() == []


@pytest.mark.asyncio
async def test_runs_are_recorded(service, run_store):
    payload = {"document": PDF}

    result = await service.submit_workflow("compliance_check", payload, run_id="req-1")

    record = await service.get_run("req-1")
    assert record.run_id == "req-1"
    assert record.request_type == "compliance_check"
    assert record.payload_hash == fingerprint_payload(payload)
    assert record.result.status == result.status
    assert await run_store.list_run_ids() == ["req-1"]


@pytest.mark.asyncio
async def test_duplicate_run_id_rejected(service, extractor):
    await service.submit_workflow("compliance_check", {"document": PDF}, run_id="req-1")

    with pytest.raises(DuplicateRunError):
        await service.submit_workflow("compliance_check", {"document": PDF}, run_id="req-1")

    assert extractor.calls == 1


class FailingRunStore(InMemoryRunStore):
    async def save(self, record):
        raise StorageError("connection refused")


@pytest.mark.asyncio
async def test_audit_write_failure_still_returns_result(extractor, caplog):
    service = OrchestrationService(
        extractor=extractor,
        embedder=FakeEmbedder(),
        index=FakeIndex(),
        generator=FakeGenerator(),
        config=OrchestratorConfig.TESTING,
        run_store=FailingRunStore(),
        today=lambda: TODAY,
    )

    with caplog.at_level(logging.ERROR, logger="grantflow.service"):
        result = await service.submit_workflow(
            "compliance_check", {"document": PDF}, run_id="req-1"
        )

    assert result.status == WorkflowStatus.SUCCEEDED
    assert result.outputs["compliance"].status == ComplianceStatus.VALID
    assert "Failed to record run req-1" in caplog.text


@pytest.mark.asyncio
async def test_get_run_without_store():
    service = OrchestrationService(
        extractor=FakeExtractor(),
        embedder=FakeEmbedder(),
        index=FakeIndex(),
        generator=FakeGenerator(),
        config=OrchestratorConfig.TESTING,
    )

    assert await service.get_run("anything") is None


@pytest.mark.asyncio
async def test_extraction_outage_opens_circuit(service, extractor):
    extractor.failures = [ExtractionError("extraction service timed out")] * 10

    first = await service.submit_workflow("compliance_check", {"document": PDF})
    assert first.error_for("extract_document").kind == ErrorKind.TRANSIENT_DEPENDENCY
    assert first.error_for("extract_document").attempts == 4
    assert (await service.get_circuit_state("extraction")).state == CircuitState.CLOSED

    second = await service.submit_workflow("compliance_check", {"document": PDF})
    assert second.error_for("extract_document").kind == ErrorKind.CIRCUIT_OPEN

    state = await service.get_circuit_state("extraction")
    assert state.state == CircuitState.OPEN
    assert state.consecutive_failures == 5
    assert extractor.calls == 5


@pytest.mark.asyncio
async def test_circuit_state_for_unused_dependency(service):
    state = await service.get_circuit_state("generation")

    assert state.name == "generation"
    assert state.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_start_workflow_returns_handle(service):
    handle = service.start_workflow("compliance_check", {"document": PDF}, run_id="req-9")

    result = await handle.result()

    assert handle.done()
    assert result.run_id == "req-9"
    assert result.status == WorkflowStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_cancelled_handle_runs_nothing(service, extractor):
    handle = service.start_workflow("compliance_check", {"document": PDF})
    handle.cancel("caller disconnected")

    result = await handle.result()

    assert result.status == WorkflowStatus.FAILED
    assert extractor.calls == 0
    assert all(s == StepStatus.CANCELLED for s in result.step_statuses.values())
    assert result.error_for("extract_document").message == "caller disconnected"


def test_plans_carry_configured_budgets(service):
    planner = service.planner
    config = OrchestratorConfig.TESTING

    assert planner.plan("compliance_check", {"document": PDF}).budget == config.compliance_budget
    assert planner.plan("grant_search", {"query": "x"}).budget == config.search_budget
    plan = planner.plan("grant_application", APPLICATION)
    assert plan.budget == config.generation_budget
    assert plan.graph.terminal_outputs == ("grants", "draft")
    assert plan.payload["as_of"] == TODAY
