"""Tests for timeline synthesis."""

from datetime import datetime, timezone

from leadpipe.domain.models import (
    ComplianceCheckRecord,
    ContactRecord,
    FormDispatchRecord,
    FormSubmissionRecord,
    LawsuitCounts,
    LeadJourney,
    MeetingRecord,
    PipelineStage,
)
from leadpipe.domain.services.timeline import build_timeline, compliance_event, meeting_event

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_full_timeline_is_chronological():
    journey = LeadJourney(
        id="c1",
        tenant_id="tenant-1",
        contact=ContactRecord(id="c1", nome="Maria", created_at="2024-01-01T10:00:00Z"),
        form=FormSubmissionRecord(id="f1", passed=True, total_score=85, updated_at="2024-01-03T10:00:00Z"),
        cpf_data=ComplianceCheckRecord(
            id="k1",
            status="rejected",
            risk_score=12.5,
            lawsuits=LawsuitCounts(total=3),
            consulted_at="2024-01-02T10:00:00Z",
        ),
        meeting=MeetingRecord(id="m1", status="agendada", data="2024-07-10", hora="14:00"),
    )

    timeline = build_timeline(journey, NOW)

    assert [e.type for e in timeline] == ["contact", "cpf", "form", "meeting"]
    contact, cpf, form, meeting = timeline
    assert contact.title == "Contato Inicial"
    assert contact.description == "Maria adicionado como contato"
    assert cpf.title == "CPF Reprovado"
    assert cpf.stage == PipelineStage.CPF_REPROVADO
    assert cpf.description == "Risco: 12.5% | Processos: 3"
    assert form.title == "Formulário Aprovado"
    assert form.description == "Score: 85"
    assert meeting.title == "Reunião Agendada"
    assert meeting.description == "Data: 2024-07-10 às 14:00"


def test_dispatch_event_only_without_form():
    dispatch = FormDispatchRecord(id="d1", enviado_em="2024-01-02T00:00:00Z")
    pending = LeadJourney(id="j1", tenant_id="t", form_dispatch=dispatch)
    assert [e.title for e in build_timeline(pending, NOW)] == ["Formulário Enviado"]

    filled = LeadJourney(id="j1", tenant_id="t", form_dispatch=dispatch, form=FormSubmissionRecord(id="f1"))
    assert [e.title for e in build_timeline(filled, NOW)] == ["Formulário Preenchido"]


def test_events_without_timestamp_go_last():
    journey = LeadJourney(
        id="j1",
        tenant_id="t",
        contact=ContactRecord(id="c1"),
        form=FormSubmissionRecord(id="f1", passed=False, created_at="2024-01-05"),
    )
    timeline = build_timeline(journey, NOW)
    assert [e.type for e in timeline] == ["form", "contact"]
    assert timeline[0].description == "Score: N/A"


def test_undecided_compliance_event():
    event = compliance_event(ComplianceCheckRecord(id="k1", status="manual_review"))
    assert event.title == "CPF em Análise"
    assert event.stage == PipelineStage.CONTATO_INICIAL


def test_meeting_events():
    pending = meeting_event(MeetingRecord(id="m1", status="pendente"), NOW)
    assert pending.title == "Reunião Pendente"
    assert pending.description == "Aguardando agendamento"
    assert pending.stage == PipelineStage.REUNIAO_PENDENTE

    consultant = meeting_event(
        MeetingRecord(id="m2", status="realizada", resultado_reuniao="aprovado", consultor_nome="Ana"), NOW
    )
    assert consultant.title == "Consultor Atribuído"
    assert consultant.description == "Resultado: aprovado | Consultor: Ana"

    no_show = meeting_event(MeetingRecord(id="m3", data="2024-01-01", compareceu=False), NOW)
    assert no_show.title == "Reunião Não Compareceu"
    assert no_show.description == "Cliente não compareceu à reunião (2024-01-01)"
