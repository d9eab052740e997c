"""Timeline synthesis: one event per signal, oldest first."""

from datetime import datetime

from leadpipe.core.dates import utcnow
from leadpipe.core.equivalence import (
    is_approval_equivalent,
    is_compliance_approved,
    is_compliance_rejected,
    is_rejection_equivalent,
)
from leadpipe.domain.models import (
    ComplianceCheckRecord,
    ContactRecord,
    FormDispatchRecord,
    FormSubmissionRecord,
    LeadJourney,
    MeetingRecord,
    PipelineStage,
    TimelineEvent,
)
from leadpipe.domain.services.pipeline_classifier import meeting_stage


def _score(form: FormSubmissionRecord) -> str:
    if form.total_score is None:
        return "N/A"
    return f"{form.total_score:g}"


def contact_event(contact: ContactRecord) -> TimelineEvent:
    return TimelineEvent(
        id=f"contact-{contact.id}",
        type="contact",
        stage=PipelineStage.CONTATO_INICIAL,
        title="Contato Inicial",
        description=f"{contact.nome} adicionado como contato",
        timestamp=contact.created_at,
        metadata={"origem": contact.origem, "telefone": contact.telefone},
    )


def dispatch_event(dispatch: FormDispatchRecord) -> TimelineEvent:
    return TimelineEvent(
        id=f"form-envio-{dispatch.id}",
        type="form",
        stage=PipelineStage.FORMULARIO_NAO_PREENCHIDO,
        title="Formulário Enviado",
        description="Formulário enviado, aguardando preenchimento",
        status=dispatch.status,
        timestamp=dispatch.enviado_em or dispatch.created_at,
        metadata={"formId": dispatch.form_id, "tentativas": dispatch.tentativas},
    )


def form_event(form: FormSubmissionRecord) -> TimelineEvent:
    if is_approval_equivalent(form.passed):
        stage, title = PipelineStage.FORMULARIO_APROVADO, "Formulário Aprovado"
        description = f"Score: {_score(form)}"
    elif is_rejection_equivalent(form.passed):
        stage, title = PipelineStage.FORMULARIO_REPROVADO, "Formulário Reprovado"
        description = f"Score: {_score(form)}"
    else:
        stage, title = PipelineStage.CONTATO_INICIAL, "Formulário Preenchido"
        description = "Aguardando avaliação"

    return TimelineEvent(
        id=f"form-{form.id}",
        type="form",
        stage=stage,
        title=title,
        description=description,
        status=form.form_status,
        timestamp=form.updated_at or form.created_at,
        metadata={"formId": form.form_id, "passed": form.passed, "totalScore": form.total_score},
    )


def compliance_event(check: ComplianceCheckRecord) -> TimelineEvent:
    if is_compliance_rejected(check.status, check.aprovado):
        stage, title = PipelineStage.CPF_REPROVADO, "CPF Reprovado"
    elif is_compliance_approved(check.status, check.aprovado):
        stage, title = PipelineStage.CPF_APROVADO, "CPF Aprovado"
    else:
        stage, title = PipelineStage.CONTATO_INICIAL, "CPF em Análise"

    return TimelineEvent(
        id=f"cpf-{check.id}",
        type="cpf",
        stage=stage,
        title=title,
        description=f"Risco: {check.risk_score:g}% | Processos: {check.lawsuits.total}",
        status=check.status,
        timestamp=check.consulted_at,
        metadata={
            "risco": check.risk_score,
            "processos": check.lawsuits.total,
            "dados": check.has_data,
        },
    )


def meeting_event(meeting: MeetingRecord, now: datetime) -> TimelineEvent:
    stage = meeting_stage(meeting, now) or PipelineStage.REUNIAO_PENDENTE
    description = ""
    if stage == PipelineStage.CONSULTOR:
        title = "Consultor Atribuído"
        description = f"Resultado: {meeting.resultado_reuniao}"
        if meeting.consultor_nome:
            description += f" | Consultor: {meeting.consultor_nome}"
    elif stage == PipelineStage.REUNIAO_COMPLETO:
        title = "Reunião Realizada"
    elif stage == PipelineStage.REUNIAO_NAO_COMPARECEU:
        title = "Reunião Não Compareceu"
        description = "Cliente não compareceu à reunião"
        if meeting.data:
            description += f" ({meeting.data})"
    elif stage == PipelineStage.REUNIAO_AGENDADA:
        title = "Reunião Agendada"
        if meeting.data:
            description = f"Data: {meeting.data}"
            if meeting.hora:
                description += f" às {meeting.hora}"
    elif (meeting.status or "").lower() == "pendente":
        title = "Reunião Pendente"
        description = "Aguardando agendamento"
    else:
        title = "Reunião"

    return TimelineEvent(
        id=f"meeting-{meeting.id or 'pending'}",
        type="meeting",
        stage=stage,
        title=title,
        description=description,
        status=meeting.status,
        timestamp=meeting.scheduled_at or meeting.created_at,
        metadata={
            "tipo": meeting.tipo,
            "local": meeting.local,
            "link": meeting.link,
            "consultorNome": meeting.consultor_nome,
        },
    )


def _sort_key(event: TimelineEvent) -> tuple[int, float]:
    # Events without a timestamp go last
    if event.timestamp is None:
        return (1, 0.0)
    return (0, event.timestamp.timestamp())


def build_timeline(journey: LeadJourney, now: datetime | None = None) -> list[TimelineEvent]:
    """Build the chronological event list for a journey.

    Emits one event per present signal; a dispatch only counts while no form
    has been filled. Sorting is stable, so events sharing a timestamp keep the
    contact → form → compliance → meeting order.
    """
    now = now or utcnow()
    events: list[TimelineEvent] = []
    if journey.contact is not None:
        events.append(contact_event(journey.contact))
    if journey.form_dispatch is not None and journey.form is None:
        events.append(dispatch_event(journey.form_dispatch))
    if journey.form is not None:
        events.append(form_event(journey.form))
    if journey.cpf_data is not None:
        events.append(compliance_event(journey.cpf_data))
    if journey.meeting is not None:
        events.append(meeting_event(journey.meeting, now))
    return sorted(events, key=_sort_key)
