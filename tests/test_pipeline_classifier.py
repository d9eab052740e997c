"""Tests for pipeline stage classification."""

import itertools
from datetime import datetime, timezone

import pytest

from leadpipe.domain.models import (
    ComplianceCheckRecord,
    ContactRecord,
    FormDispatchRecord,
    FormSubmissionRecord,
    LeadJourney,
    MeetingRecord,
    PipelineStage,
)
from leadpipe.domain.services.pipeline_classifier import classify, is_no_show, meeting_stage, stage_label

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def journey(**sources) -> LeadJourney:
    return LeadJourney(id="j1", tenant_id="tenant-1", **sources)


def test_no_signals_is_initial_contact():
    assert classify(journey(), NOW) == PipelineStage.CONTATO_INICIAL
    assert classify(journey(contact=ContactRecord(id="c1")), NOW) == PipelineStage.CONTATO_INICIAL


def test_rejected_form_outranks_compliance_approval():
    """A failed form wins over an approved CPF check."""
    result = classify(
        journey(
            form=FormSubmissionRecord(id="f1", passed=False),
            cpf_data=ComplianceCheckRecord(id="k1", status="approved"),
        ),
        NOW,
    )
    assert result == PipelineStage.FORMULARIO_REPROVADO


@pytest.mark.parametrize("passed", [False, "false", "reprovado", "rejected", 0])
def test_rejected_form_encodings(passed):
    assert classify(journey(form=FormSubmissionRecord(id="f1", passed=passed)), NOW) == PipelineStage.FORMULARIO_REPROVADO


def test_compliance_outranks_form_approval():
    approved_form = FormSubmissionRecord(id="f1", passed=True)
    assert classify(journey(form=approved_form), NOW) == PipelineStage.FORMULARIO_APROVADO
    assert (
        classify(journey(form=approved_form, cpf_data=ComplianceCheckRecord(id="k1", status="rejected")), NOW)
        == PipelineStage.CPF_REPROVADO
    )
    assert (
        classify(journey(form=approved_form, cpf_data=ComplianceCheckRecord(id="k1", status="approved")), NOW)
        == PipelineStage.CPF_APROVADO
    )


def test_compliance_flag_without_status():
    check = ComplianceCheckRecord(id="k1", status="pending", aprovado=False)
    assert classify(journey(cpf_data=check), NOW) == PipelineStage.CPF_REPROVADO


def test_undecided_signals_stay_initial_contact():
    result = classify(
        journey(
            form=FormSubmissionRecord(id="f1", passed=None),
            cpf_data=ComplianceCheckRecord(id="k1", status="manual_review"),
        ),
        NOW,
    )
    assert result == PipelineStage.CONTATO_INICIAL


def test_dispatch_without_form_is_not_filled():
    dispatch = FormDispatchRecord(id="d1")
    assert classify(journey(form_dispatch=dispatch), NOW) == PipelineStage.FORMULARIO_NAO_PREENCHIDO
    filled = journey(form_dispatch=dispatch, form=FormSubmissionRecord(id="f1", passed=True))
    assert classify(filled, NOW) == PipelineStage.FORMULARIO_APROVADO


def test_past_meeting_not_attended_is_no_show():
    """compareceu=false on a past date is a no-show, ahead of every other signal."""
    meeting = MeetingRecord(id="m1", status="agendada", data="2024-01-01", compareceu=False)
    result = classify(
        journey(
            meeting=meeting,
            form=FormSubmissionRecord(id="f1", passed=True),
            cpf_data=ComplianceCheckRecord(id="k1", status="approved"),
        ),
        NOW,
    )
    assert result == PipelineStage.REUNIAO_NAO_COMPARECEU


def test_future_meeting_not_attended_is_still_scheduled():
    meeting = MeetingRecord(id="m1", status="agendada", data="2024-12-01", compareceu=False)
    assert not is_no_show(meeting, NOW)
    assert classify(journey(meeting=meeting), NOW) == PipelineStage.REUNIAO_AGENDADA


def test_explicit_status_beats_attendance_flag():
    meeting = MeetingRecord(id="m1", status="nao_compareceu", data="2024-12-01", compareceu=True)
    assert meeting_stage(meeting, NOW) == PipelineStage.REUNIAO_NAO_COMPARECEU

    held = MeetingRecord(id="m2", status="realizada", data="2024-01-01", compareceu=False)
    assert meeting_stage(held, NOW) == PipelineStage.REUNIAO_COMPLETO


def test_meeting_result_means_consultant():
    meeting = MeetingRecord(id="m1", status="realizada", resultado_reuniao="aprovado")
    assert classify(journey(meeting=meeting), NOW) == PipelineStage.CONSULTOR


def test_pending_meeting_needs_a_date():
    assert meeting_stage(MeetingRecord(id="m1", status="pendente", data="2024-07-01"), NOW) == PipelineStage.REUNIAO_PENDENTE
    undated = MeetingRecord(id="m1", status="pendente")
    assert meeting_stage(undated, NOW) is None
    assert classify(journey(meeting=undated), NOW) == PipelineStage.CONTATO_INICIAL


def test_classification_is_total():
    """Every combination of signals lands in exactly one known stage."""
    contacts = [None, ContactRecord(id="c1")]
    forms = [None] + [FormSubmissionRecord(id="f1", passed=p) for p in (True, False, None)]
    checks = [None] + [ComplianceCheckRecord(id="k1", status=s) for s in ("approved", "rejected", "pending")]
    meetings = [None] + [
        MeetingRecord(id="m1", status=s, data="2024-01-01", compareceu=c)
        for s in ("agendada", "pendente", "realizada", None)
        for c in (None, False)
    ]
    dispatches = [None, FormDispatchRecord(id="d1")]

    for contact, form, check, meeting, dispatch in itertools.product(contacts, forms, checks, meetings, dispatches):
        stage = classify(
            journey(contact=contact, form=form, cpf_data=check, meeting=meeting, form_dispatch=dispatch), NOW
        )
        assert stage in PipelineStage


def test_stage_label():
    assert stage_label(PipelineStage.CPF_APROVADO) == "CPF Aprovado"
    assert stage_label("reuniao-agendada") == "Reunião Agendada"
    assert stage_label("unknown-stage") == "unknown-stage"
