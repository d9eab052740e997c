"""Pipeline stage classification.

Stages are decided by a strict priority cascade: the first rule that matches
wins. Meeting outcomes outrank everything, a rejected form outranks any
compliance result, and a lead with no signals is an initial contact.
"""

import logging
from datetime import datetime
from typing import Callable

from leadpipe.core.dates import utcnow
from leadpipe.core.equivalence import (
    is_approval_equivalent,
    is_compliance_approved,
    is_compliance_rejected,
    is_rejection_equivalent,
)
from leadpipe.domain.models import LeadJourney, MeetingRecord, PipelineStage

logger = logging.getLogger(__name__)

STAGE_LABELS: dict[PipelineStage, str] = {
    PipelineStage.CONTATO_INICIAL: "Contato Inicial",
    PipelineStage.FORMULARIO_NAO_PREENCHIDO: "Formulário Não Preenchido",
    PipelineStage.FORMULARIO_APROVADO: "Formulário Aprovado",
    PipelineStage.FORMULARIO_REPROVADO: "Formulário Reprovado",
    PipelineStage.CPF_APROVADO: "CPF Aprovado",
    PipelineStage.CPF_REPROVADO: "CPF Reprovado",
    PipelineStage.REUNIAO_PENDENTE: "Reunião Pendente",
    PipelineStage.REUNIAO_AGENDADA: "Reunião Agendada",
    PipelineStage.REUNIAO_NAO_COMPARECEU: "Reunião Não Compareceu",
    PipelineStage.REUNIAO_COMPLETO: "Reunião Completa",
    PipelineStage.CONSULTOR: "Consultor",
}

NO_SHOW_STATUSES = frozenset({"nao_compareceu", "naocompareceu"})
SCHEDULED_STATUSES = frozenset({"agendada", "agendado"})

Rule = Callable[[LeadJourney, datetime], PipelineStage | None]


def _status(meeting: MeetingRecord) -> str:
    return (meeting.status or "").strip().lower()


def is_no_show(meeting: MeetingRecord, now: datetime) -> bool:
    """``compareceu=False`` counts as a no-show once the meeting date has passed.

    Without a date the flag alone decides.
    """
    if meeting.compareceu is not False:
        return False
    scheduled_at = meeting.scheduled_at
    return scheduled_at is None or scheduled_at < now


def meeting_stage(meeting: MeetingRecord | None, now: datetime) -> PipelineStage | None:
    """Stage implied by a meeting alone, or None when the meeting decides nothing."""
    if meeting is None:
        return None
    status = _status(meeting)
    if meeting.resultado_reuniao:
        return PipelineStage.CONSULTOR
    if status == "realizada":
        return PipelineStage.REUNIAO_COMPLETO
    # Explicit status is checked before the compareceu flag
    if status in NO_SHOW_STATUSES:
        return PipelineStage.REUNIAO_NAO_COMPARECEU
    if is_no_show(meeting, now):
        return PipelineStage.REUNIAO_NAO_COMPARECEU
    if status in SCHEDULED_STATUSES:
        return PipelineStage.REUNIAO_AGENDADA
    if status == "pendente" and meeting.data:
        return PipelineStage.REUNIAO_PENDENTE
    return None


def _meeting_rule(journey: LeadJourney, now: datetime) -> PipelineStage | None:
    return meeting_stage(journey.meeting, now)


def _form_rejected_rule(journey: LeadJourney, now: datetime) -> PipelineStage | None:
    if journey.form is not None and is_rejection_equivalent(journey.form.passed):
        return PipelineStage.FORMULARIO_REPROVADO
    return None


def _compliance_rule(journey: LeadJourney, now: datetime) -> PipelineStage | None:
    check = journey.cpf_data
    if check is None:
        return None
    if is_compliance_rejected(check.status, check.aprovado):
        return PipelineStage.CPF_REPROVADO
    if is_compliance_approved(check.status, check.aprovado):
        return PipelineStage.CPF_APROVADO
    logger.debug(f"[PIPELINE] Compliance check {check.id} has undecided status {check.status!r}")
    return None


def _form_approved_rule(journey: LeadJourney, now: datetime) -> PipelineStage | None:
    if journey.form is not None and is_approval_equivalent(journey.form.passed):
        return PipelineStage.FORMULARIO_APROVADO
    return None


def _form_not_filled_rule(journey: LeadJourney, now: datetime) -> PipelineStage | None:
    if journey.form_dispatch is not None and journey.form is None:
        return PipelineStage.FORMULARIO_NAO_PREENCHIDO
    return None


RULES: list[Rule] = [
    _meeting_rule,
    _form_rejected_rule,
    _compliance_rule,
    _form_approved_rule,
    _form_not_filled_rule,
]


def classify(journey: LeadJourney, now: datetime | None = None) -> PipelineStage:
    """Classify a journey into exactly one pipeline stage.

    Args:
        journey: The merged journey
        now: Reference time for past/future meeting checks (defaults to now)

    Returns:
        The first stage produced by the rule cascade, else ``contato-inicial``
    """
    now = now or utcnow()
    for rule in RULES:
        stage = rule(journey, now)
        if stage is not None:
            return stage
    return PipelineStage.CONTATO_INICIAL


def stage_label(stage: PipelineStage | str) -> str:
    """Display label for a stage; unknown values are returned unchanged."""
    try:
        return STAGE_LABELS[PipelineStage(stage)]
    except ValueError:
        return str(stage)
