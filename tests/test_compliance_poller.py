"""Tests for the compliance reconciliation poller."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from leadpipe.core.encryption import EncryptionService, generate_encryption_key
from leadpipe.domain.services.lead_status_service import LeadStatusService
from leadpipe.domain.services.processed_marker_store import ProcessedMarkerStore
from leadpipe.persistence.models.lead import Lead
from leadpipe.persistence.repositories.lead_repository import LeadRepository
from leadpipe.workers.compliance_poller import CompliancePoller, PollerState

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

APPROVED_RESULT = {
    "id": 1,
    "cpf": "12345678901",
    "telefone": "31999972368",
    "status": "approved",
    "aprovado": True,
    "check_id": "chk-1",
    "processado_whatsapp": None,
    "data_consulta": "2024-05-01T00:00:00Z",
}
REJECTED_RESULT = {
    "id": 2,
    "cpf": "98765432100",
    "telefone": "21988887777",
    "status": "rejected",
    "aprovado": False,
    "processado_whatsapp": False,
    "data_consulta": "2024-05-02T00:00:00Z",
}


@pytest.fixture
def make_poller(session_factory, tmp_path):
    def factory(remote, **kwargs):
        return CompliancePoller(
            client=remote,
            lead_status=LeadStatusService(session_factory),
            marker_store=ProcessedMarkerStore(remote, path=tmp_path / "cpf_processed_ids.json"),
            encryption=EncryptionService(generate_encryption_key()),
            interval_minutes=kwargs.pop("interval_minutes", 5),
            state_path=tmp_path / "cpf_compliance_poller_state.json",
            clock=lambda: NOW,
            **kwargs,
        )

    return factory


async def seed(db_session, *leads):
    db_session.add_all(leads)
    await db_session.commit()


async def load_lead(session_factory, lead_id):
    async with session_factory() as session:
        return await LeadRepository(session).get_by_id(None, lead_id)


def result_rows(remote):
    return {row["id"]: row for row in remote.tables["cpf_compliance_results"]}


@pytest.mark.asyncio
async def test_reconciles_pending_results(make_remote, make_poller, db_session, session_factory):
    await seed(
        db_session,
        Lead(id="by-cpf", tenant_id="t1", cpf_normalized="12345678901"),
        Lead(id="by-phone", tenant_id="t1", phone_normalized="5521988887777"),
    )
    remote = make_remote(
        tables={
            "cpf_compliance_results": [
                APPROVED_RESULT,
                REJECTED_RESULT,
                {**APPROVED_RESULT, "id": 3, "status": "pending"},
                {**APPROVED_RESULT, "id": 4, "processado_whatsapp": True},
            ]
        }
    )
    poller = make_poller(remote)

    result = await poller.poll_once()

    assert result.success
    assert result.processed_count == 2
    approved = await load_lead(session_factory, "by-cpf")
    assert approved.cpf_status == "approved"
    assert approved.pipeline_status == "cpf-aprovado"
    assert approved.cpf_check_id == "chk-1"
    rejected = await load_lead(session_factory, "by-phone")
    assert rejected.cpf_status == "rejected"
    assert rejected.pipeline_status == "cpf-reprovado"
    assert rejected.cpf_check_id is None

    rows = result_rows(remote)
    assert rows[1]["processado_whatsapp"] is True
    assert rows[2]["processado_whatsapp"] is True
    assert rows[3]["processado_whatsapp"] is None

    state = poller.get_state()
    assert state.total_processed == 2
    assert state.total_errors == 0
    assert state.last_polled_at == NOW


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(make_remote, make_poller, db_session):
    await seed(db_session, Lead(id="a", tenant_id="t1", cpf_normalized="12345678901"))
    remote = make_remote(tables={"cpf_compliance_results": [APPROVED_RESULT]})
    poller = make_poller(remote)

    assert (await poller.poll_once()).processed_count == 1

    with patch.object(poller.lead_status, "apply_lead_update", new=AsyncMock(return_value=True)) as mock_update:
        result = await poller.poll_once()

    assert result.processed_count == 0
    mock_update.assert_not_called()
    assert poller.get_state().total_processed == 1


@pytest.mark.asyncio
async def test_unmatched_result_is_marked_processed(make_remote, make_poller):
    remote = make_remote(tables={"cpf_compliance_results": [APPROVED_RESULT]})
    poller = make_poller(remote)

    result = await poller.poll_once()

    assert result.processed_count == 1
    assert result_rows(remote)[1]["processado_whatsapp"] is True


@pytest.mark.asyncio
async def test_every_matching_lead_is_updated(make_remote, make_poller, db_session, session_factory):
    await seed(
        db_session,
        Lead(id="a", tenant_id="t1", cpf_normalized="12345678901"),
        Lead(id="b", tenant_id="t2", cpf_normalized="12345678901"),
        Lead(id="orphan", tenant_id=None, cpf_normalized="12345678901"),
    )
    poller = make_poller(make_remote(tables={"cpf_compliance_results": [APPROVED_RESULT]}))

    await poller.poll_once()

    assert (await load_lead(session_factory, "a")).cpf_status == "approved"
    assert (await load_lead(session_factory, "b")).cpf_status == "approved"
    assert (await load_lead(session_factory, "orphan")).cpf_status is None


@pytest.mark.asyncio
async def test_failed_update_leaves_result_pending(make_remote, make_poller, db_session):
    await seed(db_session, Lead(id="a", tenant_id="t1", cpf_normalized="12345678901"))
    remote = make_remote(tables={"cpf_compliance_results": [APPROVED_RESULT]})
    poller = make_poller(remote)

    with patch.object(poller.lead_status, "apply_lead_update", new=AsyncMock(return_value=False)):
        result = await poller.poll_once()

    assert result.success
    assert result.processed_count == 0
    assert result_rows(remote)[1]["processado_whatsapp"] is None
    assert poller.get_state().total_errors == 1

    retry = await poller.poll_once()
    assert retry.processed_count == 1


@pytest.mark.asyncio
async def test_one_failing_result_does_not_stop_the_batch(make_remote, make_poller):
    remote = make_remote(tables={"cpf_compliance_results": [APPROVED_RESULT, REJECTED_RESULT]})
    poller = make_poller(remote)

    async def resolve(cpf, phone):
        if cpf == "98765432100":
            raise RuntimeError("database gone")
        return []

    with patch.object(poller.lead_status, "resolve_leads", side_effect=resolve):
        result = await poller.poll_once()

    assert result.processed_count == 1
    assert poller.get_state().total_errors == 1
    assert result_rows(remote)[2]["processado_whatsapp"] is False


@pytest.mark.asyncio
async def test_basic_schema_with_local_markers(make_remote, make_poller, db_session, session_factory, tmp_path):
    """Older schemas: no phone or processed column, phone comes from form submissions."""
    await seed(db_session, Lead(id="a", tenant_id="t1", phone_normalized="5531999972368"))
    remote = make_remote(
        tables={
            "cpf_compliance_results": [
                {"id": 1, "cpf": "12345678901", "status": "approved", "data_consulta": "2024-05-01T00:00:00Z"},
            ],
            "form_submissions": [
                {"id": "s1", "contact_cpf": "12345678901", "contact_phone": "31999972368",
                 "created_at": "2024-04-01T00:00:00Z"},
            ],
        },
        missing_columns={"cpf_compliance_results": {"telefone", "processado_whatsapp"}},
    )
    poller = make_poller(remote)

    result = await poller.poll_once()

    assert result.processed_count == 1
    assert (await load_lead(session_factory, "a")).cpf_status == "approved"
    assert json.loads((tmp_path / "cpf_processed_ids.json").read_text()) == ["1"]

    assert (await poller.poll_once()).processed_count == 0


@pytest.mark.asyncio
async def test_recent_mirror_checks_are_reconciled(make_remote, make_poller, db_session, session_factory):
    recent = (NOW - timedelta(hours=1)).isoformat()
    await seed(
        db_session,
        Lead(id="by-cpf", tenant_id="t1", cpf_normalized="12345678901"),
        Lead(id="by-submission", tenant_id="t1", submission_id="s9"),
        Lead(id="by-submission-phone", tenant_id="t1", phone_normalized="5541966665555"),
        Lead(id="stale", tenant_id="t1", cpf_normalized="11111111111"),
    )
    remote = make_remote(
        tables={
            "datacorp_checks": [
                {"id": "k1", "status": "approved", "person_cpf": "12345678901", "updated_at": recent},
                {"id": "k2", "status": "rejected", "submission_id": "s9", "updated_at": recent},
                {"id": "k3", "status": "rejected", "person_cpf": "55555555555", "updated_at": recent},
                {"id": "k4", "status": "approved", "person_cpf": "11111111111",
                 "updated_at": (NOW - timedelta(days=3)).isoformat()},
                {"id": "k5", "status": "pending", "person_cpf": "11111111111", "updated_at": recent},
            ],
            "form_submissions": [
                {"id": "s5", "contact_cpf": "55555555555", "contact_phone": "41966665555",
                 "created_at": "2024-05-01T00:00:00Z"},
            ],
        }
    )
    poller = make_poller(remote)

    result = await poller.poll_once()

    assert result.processed_count == 3
    assert (await load_lead(session_factory, "by-cpf")).cpf_check_id == "k1"
    assert (await load_lead(session_factory, "by-submission")).cpf_status == "rejected"
    assert (await load_lead(session_factory, "by-submission-phone")).cpf_status == "rejected"
    assert (await load_lead(session_factory, "stale")).cpf_status is None
    assert poller.marker_store.local_ids() == {"datacorp:k1", "datacorp:k2", "datacorp:k3"}

    assert (await poller.poll_once()).processed_count == 0


@pytest.mark.asyncio
async def test_results_and_mirror_drained_in_one_run(make_remote, make_poller, db_session, session_factory):
    """Unchanged data is fully handled by the first run; the next run processes nothing."""
    await seed(db_session, Lead(id="a", tenant_id="t1", cpf_normalized="12345678901"))
    remote = make_remote(
        tables={
            "cpf_compliance_results": [APPROVED_RESULT],
            "datacorp_checks": [
                {"id": "k1", "status": "approved", "person_cpf": "12345678901",
                 "updated_at": (NOW - timedelta(hours=1)).isoformat()},
            ],
        }
    )
    poller = make_poller(remote)

    first = await poller.poll_once()
    second = await poller.poll_once()

    assert first.processed_count == 2
    assert second.processed_count == 0
    assert (await load_lead(session_factory, "a")).cpf_check_id == "k1"
    assert result_rows(remote)[1]["processado_whatsapp"] is True
    assert poller.marker_store.local_ids() == {"datacorp:k1"}
    assert poller.get_state().total_processed == 2


@pytest.mark.asyncio
async def test_single_flight(make_remote, make_poller):
    """A run requested while another is in flight is skipped, not queued."""
    poller = make_poller(make_remote(tables={"cpf_compliance_results": [APPROVED_RESULT]}))
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_resolve(cpf, phone):
        started.set()
        await release.wait()
        return []

    with patch.object(poller.lead_status, "resolve_leads", side_effect=slow_resolve) as mock_resolve:
        first = asyncio.create_task(poller.poll_once())
        await started.wait()

        assert poller.is_polling
        skipped = await poller.poll_once()
        assert skipped.skipped
        assert skipped.processed_count == 0

        release.set()
        result = await first

    assert result.processed_count == 1
    assert not result.skipped
    assert mock_resolve.call_count == 1
    assert not poller.is_polling


@pytest.mark.asyncio
async def test_run_failure_is_recorded_and_persisted(make_remote, make_poller, tmp_path):
    remote = make_remote(missing_tables=("cpf_compliance_results",))
    poller = make_poller(remote)

    result = await poller.poll_once()

    assert not result.success
    assert "cpf_compliance_results" in result.error
    assert poller.get_state().total_errors == 1

    saved = json.loads((tmp_path / "cpf_compliance_poller_state.json").read_text())
    assert saved["totalErrors"] == 1
    assert saved["lastError"] == result.error
    assert saved["lastPolledAt"].startswith("2024-06-01T12:00:00")

    reloaded = make_poller(remote)
    assert reloaded.get_state().model_dump() == PollerState(
        last_polled_at=NOW, total_processed=0, total_errors=1, last_error=result.error
    ).model_dump()


@pytest.mark.asyncio
async def test_unconfigured_client_does_nothing(make_remote, make_poller):
    remote = make_remote(configured=False)
    result = await make_poller(remote).poll_once()
    assert result.success
    assert result.processed_count == 0
    assert remote.selects == []


@pytest.mark.asyncio
async def test_start_runs_immediately_and_stop_ends_loop(make_remote, make_poller):
    poller = make_poller(make_remote(), interval_minutes=60)

    with patch.object(poller, "poll_once", new=AsyncMock()) as mock_poll:
        poller.start()
        poller.start()
        await asyncio.sleep(0.05)
        assert poller.is_started
        await poller.stop()

    mock_poll.assert_awaited_once()
    assert not poller.is_started
