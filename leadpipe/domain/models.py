"""Domain models for lead journeys and the source records they are built from."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from leadpipe.core.dates import parse_timestamp


class PipelineStage(str, Enum):
    """The fixed Kanban stages a lead can be classified into."""

    CONTATO_INICIAL = "contato-inicial"
    FORMULARIO_NAO_PREENCHIDO = "formulario-nao-preenchido"
    FORMULARIO_APROVADO = "formulario-aprovado"
    FORMULARIO_REPROVADO = "formulario-reprovado"
    CPF_APROVADO = "cpf-aprovado"
    CPF_REPROVADO = "cpf-reprovado"
    REUNIAO_PENDENTE = "reuniao-pendente"
    REUNIAO_AGENDADA = "reuniao-agendada"
    REUNIAO_NAO_COMPARECEU = "reuniao-nao-compareceu"
    REUNIAO_COMPLETO = "reuniao-completo"
    CONSULTOR = "consultor"


class MatchLevel(str, Enum):
    """How a source record was linked to a journey."""

    CPF = "cpf"
    PHONE = "phone"
    NAME = "name"


class DomainModel(BaseModel):
    """Base model serializing to camelCase for API consumers."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class _Timestamped(DomainModel):
    """Parses loosely formatted timestamps from the data sources."""

    @field_validator("created_at", "updated_at", mode="before", check_fields=False)
    @classmethod
    def _parse_timestamps(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)


class MeetingRecord(DomainModel):
    """A meeting proposed, scheduled or held with the lead."""

    id: str | None = None
    id_reuniao: str | None = None
    titulo: str | None = None
    status: str | None = None  # pendente, agendada, realizada, nao_compareceu, cancelada
    data: str | None = None  # YYYY-MM-DD
    hora: str | None = None  # HH:MM
    data_inicio: datetime | None = None
    local: str | None = None
    tipo: str | None = None  # online, presencial
    link: str | None = None
    consultor_nome: str | None = None
    consultor_email: str | None = None
    resultado_reuniao: str | None = None  # aprovado, em_analise, recusado
    motivo_recusa: str | None = None
    compareceu: bool | None = None
    tenant_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("data_inicio", "created_at", "updated_at", mode="before")
    @classmethod
    def _parse_timestamps(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @property
    def scheduled_at(self) -> datetime | None:
        """Meeting start, falling back to the bare meeting date."""
        return self.data_inicio or parse_timestamp(self.data)


class ContactRecord(_Timestamped):
    """A person first seen through chat or manual entry."""

    id: str
    nome: str = "Sem nome"
    email: str | None = None
    telefone: str = ""
    telefone_normalizado: str = ""
    cpf: str | None = None
    origem: str | None = None
    tenant_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Meeting columns some deployments keep on the contact row itself
    meeting: MeetingRecord | None = Field(default=None, exclude=True)


class FormSubmissionRecord(_Timestamped):
    """A completed qualification form."""

    id: str
    form_id: str | None = None
    form_status: str = "completed"
    passed: Any = None  # tri-state: bool, string or numeric encodings
    total_score: float | None = None
    answers: Any = None
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    contact_cpf: str | None = None
    tenant_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LawsuitCounts(DomainModel):
    """Lawsuit statistics reported by the compliance provider."""

    total: int = 0
    as_author: int = 0
    as_defendant: int = 0
    last_30_days: int = 0
    last_90_days: int = 0
    last_180_days: int = 0
    last_365_days: int = 0
    first_lawsuit_at: str | None = None
    last_lawsuit_at: str | None = None


class ComplianceCheckRecord(DomainModel):
    """An identity-compliance (CPF) check result."""

    id: str
    check_id: str | None = None
    cpf: str = ""  # normalized; empty when it couldn't be read
    cpf_encrypted: str | None = Field(default=None, exclude=True)
    person_name: str | None = None
    person_phone: str | None = None
    submission_id: str | None = None
    status: str = "pending"  # approved, rejected, pending, manual_review, error
    aprovado: bool | None = None
    risk_score: float = 0
    has_data: bool = False
    lawsuits: LawsuitCounts = Field(default_factory=LawsuitCounts)
    consulted_at: datetime | None = None
    query_id: str | None = None
    response_time_ms: int | None = None
    match_keys: str | None = None
    status_code: int | None = None
    status_message: str | None = None
    payload: Any = Field(default=None, exclude=True)
    tenant_id: str | None = None
    source_table: str | None = None

    @field_validator("consulted_at", mode="before")
    @classmethod
    def _parse_consulted_at(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @property
    def effective_check_id(self) -> str:
        return self.check_id or self.id


class FormDispatchRecord(_Timestamped):
    """A form link sent to the lead, possibly never filled."""

    id: str
    form_id: str | None = None
    telefone: str | None = None
    telefone_normalizado: str = ""
    nome: str | None = None
    email: str | None = None
    form_url: str | None = None
    enviado_em: datetime | None = None
    status: str = "enviado"
    tentativas: int = 0
    ultima_tentativa: datetime | None = None
    tenant_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("enviado_em", "ultima_tentativa", mode="before")
    @classmethod
    def _parse_dispatch_times(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)


class DashboardRecord(DomainModel):
    """Chat and engagement summary of one phone from the dashboard view."""

    id: str
    telefone: str | None = None
    telefone_normalizado: str = ""
    nome: str | None = None
    total_mensagens_chat: int | None = None
    mensagens_cliente: str | None = None
    mensagens_agente: str | None = None
    total_transcricoes: int | None = None
    primeiro_contato: datetime | None = None
    ultimo_contato: datetime | None = None
    primeira_mensagem: str | None = None
    ultima_mensagem: str | None = None
    tem_dados_cliente: bool | None = None
    tem_historico_chat: bool | None = None
    tem_transcricoes: bool | None = None
    status_atendimento: str | None = None
    setor_atual: str | None = None
    ativo: bool | None = None
    tipo_reuniao_atual: str | None = None
    ultima_atividade: datetime | None = None
    total_registros: int | None = None
    registros_dados_cliente: int | None = None
    fontes_dados: str | None = None
    ultimo_resumo_estruturado: str | None = None
    todas_mensagens_chat: str | None = None
    tenant_id: str | None = None

    @field_validator("primeiro_contato", "ultimo_contato", "ultima_atividade", mode="before")
    @classmethod
    def _parse_activity_times(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)


class TimelineEvent(DomainModel):
    """One discrete step in a lead's journey."""

    id: str
    type: Literal["contact", "form", "cpf", "meeting"]
    stage: PipelineStage
    title: str
    description: str | None = None
    status: str | None = None
    timestamp: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class LeadJourney(DomainModel):
    """Canonical per-lead view merged from every source. Built fresh on each read."""

    id: str
    tenant_id: str
    telefone: str = ""
    telefone_normalizado: str = ""
    nome: str = "Sem nome"
    email: str | None = None
    cpf: str | None = None
    pipeline_status: PipelineStage = PipelineStage.CONTATO_INICIAL
    pipeline_stage_label: str = ""
    contact: ContactRecord | None = None
    form: FormSubmissionRecord | None = None
    cpf_data: ComplianceCheckRecord | None = None
    meeting: MeetingRecord | None = None
    form_dispatch: FormDispatchRecord | None = None
    dashboard: DashboardRecord | None = None
    timeline: list[TimelineEvent] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    is_orphan: bool = False
    match_levels: dict[str, MatchLevel] = Field(default_factory=dict)
    # Older records of a source sharing this phone, collapsed into the newest one
    collapsed_record_ids: dict[str, list[str]] = Field(default_factory=dict)
