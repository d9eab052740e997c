"""Source fetchers for lead journey aggregation.

Each fetcher reads one tenant table from the Remote Data API (bounded,
most-recent-first) and builds a ``SourceIndex``: the records plus lookup maps
keyed by normalized phone, normalized CPF and lower-cased name. A fetch failure
degrades to an empty index so one missing table never aborts an aggregation.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, TypeVar

from leadpipe.core.dates import parse_timestamp
from leadpipe.core.encryption import EncryptionError, EncryptionService, get_encryption_service
from leadpipe.core.identity import is_cpf_key, normalize_cpf, normalize_name
from leadpipe.core.phone import normalize_phone
from leadpipe.domain.models import (
    ComplianceCheckRecord,
    ContactRecord,
    DashboardRecord,
    FormDispatchRecord,
    FormSubmissionRecord,
    LawsuitCounts,
    MeetingRecord,
)
from leadpipe.infrastructure.remote_data_client import (
    RemoteDataClient,
    SourceUnavailable,
    eq,
    in_,
    is_null,
)
from leadpipe.settings import settings

logger = logging.getLogger(__name__)

CONTACTS_TABLE = "dados_cliente"
FORM_SUBMISSIONS_TABLE = "form_submissions"
COMPLIANCE_TABLES = ("cpf_compliance_resultados", "cpf_compliance_results")
COMPLIANCE_MIRROR_TABLE = "datacorp_checks"
MEETING_TABLES = ("reuniao", "reunioes")
FORM_DISPATCH_TABLE = "formulario_envios"
DASHBOARD_TABLE = "dashboard_completo_v5_base"

# Detail fields kept from an older meeting row when a newer one replaces it
MEETING_MERGE_FIELDS = (
    "tipo_reuniao",
    "link_reuniao",
    "consultor",
    "consultor_nome",
    "consultor_email",
    "resultado_reuniao",
    "motivo_recusa",
)

RecordT = TypeVar("RecordT")


@dataclass
class SourceIndex(Generic[RecordT]):
    """Records of one source plus first-wins lookup maps.

    Records are kept in fetch order (most recent first), so the first record
    listed under a key is the newest one. ``consumed`` tracks records already
    placed in a journey by object identity, since ids from different tables
    (``reuniao`` and ``reunioes``) may collide.
    """

    source: str
    records: list[RecordT] = field(default_factory=list)
    by_phone: dict[str, list[RecordT]] = field(default_factory=dict)
    by_cpf: dict[str, list[RecordT]] = field(default_factory=dict)
    by_name: dict[str, list[RecordT]] = field(default_factory=dict)
    consumed: set[int] = field(default_factory=set)
    phone_key_by_record: dict[int, str] = field(default_factory=dict)

    def add(
        self,
        record: RecordT,
        *,
        phone: str = "",
        cpfs: Iterable[str] = (),
        names: Iterable[str] = (),
    ) -> None:
        self.records.append(record)
        self.phone_key_by_record[id(record)] = phone
        if phone:
            self.by_phone.setdefault(phone, []).append(record)
        for cpf in cpfs:
            if is_cpf_key(cpf):
                self.by_cpf.setdefault(cpf, []).append(record)
        for name in names:
            if name:
                self.by_name.setdefault(name, []).append(record)

    def is_consumed(self, record: RecordT) -> bool:
        return id(record) in self.consumed

    def claim(self, record: RecordT) -> None:
        self.consumed.add(id(record))

    def phone_key_of(self, record: RecordT) -> str:
        return self.phone_key_by_record.get(id(record), "")

    def unconsumed(self) -> list[RecordT]:
        return [r for r in self.records if id(r) not in self.consumed]

    def phone_keys(self) -> list[str]:
        return list(self.by_phone)

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class SourceBundle:
    """The indexes a single aggregation works from."""

    contacts: SourceIndex[ContactRecord]
    forms: SourceIndex[FormSubmissionRecord]
    compliance: SourceIndex[ComplianceCheckRecord]
    meetings: SourceIndex[MeetingRecord]
    dispatches: SourceIndex[FormDispatchRecord]
    dashboard: SourceIndex[DashboardRecord]


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if token in ("true", "t", "1", "sim"):
        return True
    if token in ("false", "f", "0", "nao", "não"):
        return False
    return None


# ---------------------------------------------------------------------------
# Row -> record conversion
# ---------------------------------------------------------------------------

def meeting_from_contact_row(row: dict[str, Any]) -> MeetingRecord | None:
    """Derive a meeting from ``reuniao_*`` columns kept on a contact row."""
    if not (row.get("reuniao_status") or row.get("reuniao_data") or row.get("consultor_nome")):
        return None
    return meeting_from_row(
        {
            "id": row.get("id"),
            "status": row.get("reuniao_status"),
            "data": row.get("reuniao_data"),
            "hora": row.get("reuniao_hora"),
            "local": row.get("reuniao_local"),
            "tipo": row.get("reuniao_tipo"),
            "link": row.get("reuniao_link"),
            "consultor_nome": row.get("consultor_nome"),
            "consultor_email": row.get("consultor_email"),
            "resultado_reuniao": row.get("resultado_reuniao"),
            "motivo_recusa": row.get("motivo_recusa"),
            "tenant_id": row.get("tenant_id"),
        }
    )


def contact_from_row(row: dict[str, Any]) -> ContactRecord:
    phone_key = normalize_phone(row.get("telefone_normalizado") or row.get("telefone"))
    return ContactRecord(
        id=str(row["id"]),
        nome=_text(row.get("nome")) or "Sem nome",
        email=_text(row.get("email")),
        telefone=_text(row.get("telefone")) or phone_key,
        telefone_normalizado=phone_key,
        cpf=_text(row.get("cpf")),
        origem=_text(row.get("origem")),
        tenant_id=_text(row.get("tenant_id")),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        meeting=meeting_from_contact_row(row),
    )


def form_from_row(row: dict[str, Any]) -> FormSubmissionRecord:
    answers = row.get("answers")
    if isinstance(answers, str):
        try:
            answers = json.loads(answers)
        except ValueError:
            logger.warning(f"[FETCH] Could not parse answers of submission {row.get('id')} as JSON")
    return FormSubmissionRecord(
        id=str(row["id"]),
        form_id=_text(row.get("form_id")),
        form_status=_text(row.get("form_status")) or "completed",
        passed=row.get("passed"),
        total_score=_float(row.get("total_score")),
        answers=answers,
        contact_name=_text(row.get("contact_name")),
        contact_email=_text(row.get("contact_email")),
        contact_phone=_text(row.get("contact_phone")),
        contact_cpf=_text(row.get("contact_cpf")),
        tenant_id=_text(row.get("tenant_id")),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _readable_cpf(raw: Any, encryption: EncryptionService, record_id: Any) -> str:
    """Normalize a CPF that may still carry the ``enc:`` prefix. Empty if unreadable."""
    text = _text(raw)
    if not text:
        return ""
    if text.startswith("enc:"):
        try:
            return encryption.decrypt_cpf(text)
        except EncryptionError as e:
            logger.warning(f"[FETCH] Could not decrypt CPF of check {record_id}: {e}")
            return ""
    return normalize_cpf(text)


def compliance_from_row(
    row: dict[str, Any],
    table: str,
    encryption: EncryptionService,
) -> ComplianceCheckRecord:
    """Convert a ``cpf_compliance_resultados``/``cpf_compliance_results`` row."""
    status = (_text(row.get("status")) or "pending").lower()
    aprovado = _bool(row.get("aprovado"))
    return ComplianceCheckRecord(
        id=str(row["id"]),
        check_id=_text(row.get("check_id")),
        cpf=_readable_cpf(row.get("cpf"), encryption, row.get("id")),
        person_name=_text(row.get("nome")),
        person_phone=_text(row.get("telefone")),
        submission_id=_text(row.get("submission_id")),
        status=status,
        aprovado=aprovado,
        risk_score=_float(row.get("risco")) or 0,
        has_data=bool(row.get("dados")),
        lawsuits=LawsuitCounts(total=_int(row.get("processos"))),
        consulted_at=row.get("data_consulta") or row.get("created_at"),
        tenant_id=_text(row.get("tenant_id")),
        source_table=table,
    )


def _lawsuit_date(lawsuit: dict[str, Any]) -> str | None:
    return lawsuit.get("DistributionDate") or lawsuit.get("Date")


def extract_provider_details(payload: Any) -> dict[str, Any]:
    """Pull query metadata and lawsuit statistics out of a provider payload.

    The payload looks like::

        {"QueryId": "...", "ElapsedMilliseconds": 171,
         "Status": {"processes": [{"Code": 0, "Message": "OK"}]},
         "Result": [{"MatchKeys": "doc{...}", "BasicData": {"CPF": "..."},
                     "Processes": {"TotalLawsuits": 0, "Lawsuits": [...], ...}}]}
    """
    details: dict[str, Any] = {
        "query_id": None,
        "response_time_ms": None,
        "status_code": None,
        "status_message": None,
        "match_keys": None,
        "cpf": "",
        "lawsuits": LawsuitCounts(),
    }
    if not isinstance(payload, dict):
        return details

    details["query_id"] = _text(payload.get("QueryId"))
    if payload.get("ElapsedMilliseconds") is not None:
        details["response_time_ms"] = _int(payload.get("ElapsedMilliseconds"))

    status_processes = (payload.get("Status") or {}).get("processes") or []
    if status_processes and isinstance(status_processes[0], dict):
        details["status_code"] = _int(status_processes[0].get("Code"))
        details["status_message"] = status_processes[0].get("Message") or "OK"

    results = payload.get("Result") or []
    first = results[0] if results and isinstance(results[0], dict) else None
    if first is None:
        return details

    basic_cpf = normalize_cpf((first.get("BasicData") or {}).get("CPF"))
    details["cpf"] = basic_cpf
    details["match_keys"] = first.get("MatchKeys") or (f"doc{{{basic_cpf}}}" if basic_cpf else None)

    processes = first.get("Processes")
    if isinstance(processes, dict):
        lawsuits = [l for l in processes.get("Lawsuits") or [] if isinstance(l, dict)]
        dated = sorted(
            (l for l in lawsuits if _lawsuit_date(l)),
            key=lambda l: parse_timestamp(_lawsuit_date(l)) or parse_timestamp(0),
        )
        details["lawsuits"] = LawsuitCounts(
            total=_int(processes.get("TotalLawsuits")),
            as_author=_int(processes.get("TotalLawsuitsAsAuthor")),
            as_defendant=_int(processes.get("TotalLawsuitsAsDefendant")),
            last_30_days=_int(processes.get("Last30DaysLawsuits")),
            last_90_days=_int(processes.get("Last90DaysLawsuits")),
            last_180_days=_int(processes.get("Last180DaysLawsuits")),
            last_365_days=_int(processes.get("Last365DaysLawsuits")),
            first_lawsuit_at=_lawsuit_date(dated[0]) if dated else None,
            last_lawsuit_at=_lawsuit_date(dated[-1]) if dated else None,
        )
    return details


def resolve_mirror_cpf(row: dict[str, Any], encryption: EncryptionService) -> str:
    """CPF of a mirror row: ``person_cpf``, then decrypted ``cpf_encrypted``, then the payload."""
    person_cpf = normalize_cpf(row.get("person_cpf"))
    if is_cpf_key(person_cpf):
        return person_cpf

    encrypted = _text(row.get("cpf_encrypted"))
    if encrypted:
        try:
            return encryption.decrypt_cpf(encrypted)
        except EncryptionError as e:
            logger.info(f"[FETCH] Could not decrypt CPF of check {row.get('id')}: {e}")

    return extract_provider_details(row.get("payload"))["cpf"]


def compliance_from_mirror_row(
    row: dict[str, Any],
    encryption: EncryptionService,
    submission_phones: dict[str, str] | None = None,
) -> ComplianceCheckRecord:
    """Convert a provider mirror (``datacorp_checks``) row."""
    details = extract_provider_details(row.get("payload"))
    phone = _text(row.get("person_phone")) or _text(row.get("telefone"))
    submission_id = _text(row.get("submission_id"))
    if not phone and submission_id and submission_phones:
        phone = submission_phones.get(submission_id)

    status = (_text(row.get("status")) or "pending").lower()
    return ComplianceCheckRecord(
        id=str(row["id"]),
        check_id=str(row["id"]),
        cpf=resolve_mirror_cpf(row, encryption),
        cpf_encrypted=_text(row.get("cpf_encrypted")),
        person_name=_text(row.get("person_name")),
        person_phone=phone,
        submission_id=submission_id,
        status=status,
        aprovado=status == "approved",
        risk_score=_float(row.get("risk_score")) or 0,
        has_data=bool(row.get("payload")),
        lawsuits=details["lawsuits"],
        consulted_at=row.get("consulted_at") or row.get("created_at"),
        query_id=details["query_id"] or str(row["id"]),
        response_time_ms=details["response_time_ms"] or _int(row.get("response_time_ms")) or None,
        match_keys=details["match_keys"],
        status_code=details["status_code"],
        status_message=details["status_message"],
        payload=row.get("payload"),
        tenant_id=_text(row.get("tenant_id")),
        source_table=COMPLIANCE_MIRROR_TABLE,
    )


def _split_meeting_start(row: dict[str, Any]) -> tuple[str | None, str | None]:
    """Meeting date (YYYY-MM-DD) and time (HH:MM) from the row's start fields."""
    raw = row.get("data_inicio") or row.get("data") or row.get("reuniao_data")
    meeting_date = meeting_time = None
    if raw:
        parsed = parse_timestamp(raw)
        text = str(raw)
        if parsed is not None:
            meeting_date = parsed.date().isoformat()
            if "T" in text or " " in text.strip():
                meeting_time = parsed.strftime("%H:%M")
        else:
            parts = text.split(" ")
            meeting_date = parts[0]
            meeting_time = parts[1][:5] if len(parts) > 1 else None
    explicit_time = _text(row.get("hora")) or _text(row.get("reuniao_hora"))
    if explicit_time:
        meeting_time = explicit_time
    return meeting_date, meeting_time


def normalize_meeting_status(status: Any) -> str | None:
    text = _text(status)
    if text is None:
        return None
    lowered = text.lower()
    return "agendada" if lowered == "agendado" else lowered


def meeting_from_row(row: dict[str, Any]) -> MeetingRecord:
    meeting_date, meeting_time = _split_meeting_start(row)
    record_id = _text(row.get("id")) or _text(row.get("id_reuniao"))
    return MeetingRecord(
        id=record_id,
        id_reuniao=_text(row.get("id_reuniao")),
        titulo=_text(row.get("titulo")),
        status=normalize_meeting_status(row.get("status") or row.get("reuniao_status")),
        data=meeting_date,
        hora=meeting_time,
        data_inicio=row.get("data_inicio"),
        local=_text(row.get("local")) or _text(row.get("reuniao_local")),
        tipo=_text(row.get("tipo_reuniao")) or _text(row.get("tipo")) or _text(row.get("reuniao_tipo")),
        link=_text(row.get("link_reuniao")) or _text(row.get("link")) or _text(row.get("reuniao_link")),
        consultor_nome=_text(row.get("consultor")) or _text(row.get("consultor_nome")),
        consultor_email=_text(row.get("consultor_email")),
        resultado_reuniao=_text(row.get("resultado_reuniao")) or _text(row.get("resultado")),
        motivo_recusa=_text(row.get("motivo_recusa")),
        compareceu=_bool(row.get("compareceu")),
        tenant_id=_text(row.get("tenant_id")),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def merge_meeting_rows(existing: dict[str, Any] | None, row: dict[str, Any]) -> dict[str, Any]:
    """Combine two meeting rows for the same phone.

    The first row seen wins, unless it has no status and the new one does; in
    that case the new row replaces it, keeping detail fields it lacks.
    """
    if existing is None:
        return row
    if existing.get("status") or not row.get("status"):
        return existing
    merged = {**existing, **row}
    for name in MEETING_MERGE_FIELDS:
        merged[name] = row.get(name) or existing.get(name)
    return merged


def dispatch_from_row(row: dict[str, Any]) -> FormDispatchRecord:
    return FormDispatchRecord(
        id=str(row["id"]),
        form_id=_text(row.get("form_id")),
        telefone=_text(row.get("telefone")),
        telefone_normalizado=normalize_phone(row.get("telefone_normalizado") or row.get("telefone")),
        nome=_text(row.get("nome")) or _text(row.get("contact_name")),
        email=_text(row.get("email")),
        form_url=_text(row.get("form_url")),
        enviado_em=row.get("enviado_em") or row.get("created_at"),
        status=_text(row.get("status")) or "enviado",
        tentativas=_int(row.get("tentativas")) or 1,
        ultima_tentativa=row.get("ultima_tentativa") or row.get("updated_at"),
        tenant_id=_text(row.get("tenant_id")),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def dashboard_from_row(row: dict[str, Any]) -> DashboardRecord:
    phone_key = normalize_phone(row.get("telefone"))
    return DashboardRecord(
        id=_text(row.get("id")) or f"dashboard-{phone_key}",
        telefone=_text(row.get("telefone")),
        telefone_normalizado=phone_key,
        nome=_text(row.get("nome_cliente")) or _text(row.get("nome")),
        total_mensagens_chat=_optional_int(row.get("total_mensagens_chat")),
        mensagens_cliente=_text(row.get("mensagens_cliente")),
        mensagens_agente=_text(row.get("mensagens_agente")),
        total_transcricoes=_optional_int(row.get("total_transcricoes")),
        primeiro_contato=row.get("primeiro_contato"),
        ultimo_contato=row.get("ultimo_contato"),
        primeira_mensagem=_text(row.get("primeira_mensagem")),
        ultima_mensagem=_text(row.get("ultima_mensagem")),
        tem_dados_cliente=_bool(row.get("tem_dados_cliente")),
        tem_historico_chat=_bool(row.get("tem_historico_chat")),
        tem_transcricoes=_bool(row.get("tem_transcricoes")),
        status_atendimento=_text(row.get("status_atendimento")),
        setor_atual=_text(row.get("setor_atual")),
        ativo=_bool(row.get("ativo")),
        tipo_reuniao_atual=_text(row.get("tipo_reuniao_atual")),
        ultima_atividade=row.get("ultima_atividade"),
        total_registros=_optional_int(row.get("total_registros")),
        registros_dados_cliente=_optional_int(row.get("registros_dados_cliente")),
        fontes_dados=_text(row.get("fontes_dados")),
        ultimo_resumo_estruturado=_text(row.get("ultimo_resumo_estruturado")),
        todas_mensagens_chat=_text(row.get("todas_mensagens_chat")),
        tenant_id=_text(row.get("tenant_id")),
    )


def _convert_rows(
    rows: list[dict[str, Any]],
    convert: Callable[[dict[str, Any]], RecordT],
    source: str,
) -> list[RecordT]:
    """Convert rows, skipping (and logging) rows that can't be read."""
    records = []
    for row in rows:
        if row.get("id") is None:
            logger.warning(f"[FETCH] Skipping {source} row without id")
            continue
        try:
            records.append(convert(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"[FETCH] Skipping unreadable {source} row {row.get('id')}: {e}")
    return records


# ---------------------------------------------------------------------------
# Fetchers
# ---------------------------------------------------------------------------

class SourceFetchers:
    """Reads the tenant tables and builds one index per source."""

    def __init__(
        self,
        client: RemoteDataClient,
        encryption: EncryptionService | None = None,
        fetch_limit: int | None = None,
    ) -> None:
        self.client = client
        self.encryption = encryption or get_encryption_service()
        self.fetch_limit = fetch_limit or settings.source_fetch_limit

    def _tenant_scope(
        self, tenant_id: str, include_legacy: bool = False
    ) -> tuple[dict[str, Any], list[tuple[str, Any]] | None]:
        """Filters restricting a query to a tenant.

        The default tenant sees everything. The legacy tenant also sees rows
        without a tenant id when ``include_legacy`` is set.
        """
        if tenant_id == settings.default_tenant_id:
            return {}, None
        if include_legacy and tenant_id == settings.legacy_tenant_id:
            return {}, [("tenant_id", eq(tenant_id)), ("tenant_id", is_null())]
        return {"tenant_id": tenant_id}, None

    async def _select_for_tenant(
        self,
        table: str,
        tenant_id: str,
        *,
        order: str,
        include_legacy: bool = False,
        filters: dict[str, Any] | None = None,
        tenant_column_optional: bool = False,
    ) -> list[dict[str, Any]]:
        tenant_filters, or_filter = self._tenant_scope(tenant_id, include_legacy)
        try:
            return await self.client.select(
                table,
                filters={**(filters or {}), **tenant_filters},
                or_filter=or_filter,
                order=order,
                limit=self.fetch_limit,
            )
        except SourceUnavailable as e:
            if not (tenant_column_optional and e.missing_column and (tenant_filters or or_filter)):
                raise
            logger.info(f"[FETCH] {table} has no tenant_id column, reading unfiltered")
            return await self.client.select(
                table, filters=filters, order=order, limit=self.fetch_limit
            )

    async def fetch_contacts(self, tenant_id: str) -> SourceIndex[ContactRecord]:
        index: SourceIndex[ContactRecord] = SourceIndex("contacts")
        try:
            rows = await self._select_for_tenant(CONTACTS_TABLE, tenant_id, order="created_at")
        except SourceUnavailable as e:
            logger.warning(f"[FETCH] Contacts unavailable for tenant {tenant_id}: {e}")
            return index

        for contact in _convert_rows(rows, contact_from_row, CONTACTS_TABLE):
            index.add(
                contact,
                phone=contact.telefone_normalizado,
                cpfs=[normalize_cpf(contact.cpf)],
                names=[normalize_name(contact.nome if contact.nome != "Sem nome" else None)],
            )
        logger.info(f"[FETCH] Loaded {len(index)} contacts ({len(index.by_phone)} phones)")
        return index

    async def fetch_form_submissions(self, tenant_id: str) -> SourceIndex[FormSubmissionRecord]:
        index: SourceIndex[FormSubmissionRecord] = SourceIndex("forms")
        try:
            rows = await self._select_for_tenant(
                FORM_SUBMISSIONS_TABLE, tenant_id, order="updated_at", include_legacy=True
            )
        except SourceUnavailable as e:
            logger.warning(f"[FETCH] Form submissions unavailable for tenant {tenant_id}: {e}")
            return index

        for form in _convert_rows(rows, form_from_row, FORM_SUBMISSIONS_TABLE):
            index.add(
                form,
                phone=normalize_phone(form.contact_phone),
                cpfs=[normalize_cpf(form.contact_cpf)],
                names=[normalize_name(form.contact_name)],
            )
        logger.info(
            f"[FETCH] Loaded {len(index)} form submissions "
            f"({len(index.by_phone)} by phone, {len(index.by_cpf)} by cpf, {len(index.by_name)} by name)"
        )
        return index

    async def fetch_compliance_checks(self, tenant_id: str) -> SourceIndex[ComplianceCheckRecord]:
        """Read compliance results, falling back across tables.

        ``cpf_compliance_resultados`` then ``cpf_compliance_results``; when
        neither yields rows, the provider mirror table.
        """
        checks: list[ComplianceCheckRecord] = []
        for table in COMPLIANCE_TABLES:
            try:
                rows = await self._select_for_tenant(table, tenant_id, order="data_consulta")
            except SourceUnavailable as e:
                level = logging.INFO if e.missing_table else logging.WARNING
                logger.log(level, f"[FETCH] {table} unavailable: {e}")
                continue
            if rows:
                checks = _convert_rows(
                    rows, lambda row, t=table: compliance_from_row(row, t, self.encryption), table
                )
                break
            logger.info(f"[FETCH] {table} is empty")

        if not checks:
            checks = await self._fetch_mirror_checks(tenant_id)

        index: SourceIndex[ComplianceCheckRecord] = SourceIndex("compliance")
        for check in checks:
            index.add(
                check,
                phone=normalize_phone(check.person_phone),
                cpfs=[check.cpf],
                names=[normalize_name(check.person_name)],
            )
        logger.info(
            f"[FETCH] Loaded {len(index)} compliance checks "
            f"({len(index.by_cpf)} by cpf, {len(index.by_phone)} by phone)"
        )
        return index

    async def _fetch_mirror_checks(self, tenant_id: str) -> list[ComplianceCheckRecord]:
        try:
            rows = await self._select_for_tenant(
                COMPLIANCE_MIRROR_TABLE,
                tenant_id,
                order="consulted_at",
                filters={"status": in_(["approved", "rejected"])},
                tenant_column_optional=True,
            )
        except SourceUnavailable as e:
            logger.warning(f"[FETCH] Compliance mirror unavailable: {e}")
            return []
        if not rows:
            return []

        submission_phones = await self.fetch_submission_phones(
            [str(r["submission_id"]) for r in rows if r.get("submission_id")]
        )
        return _convert_rows(
            rows,
            lambda row: compliance_from_mirror_row(row, self.encryption, submission_phones),
            COMPLIANCE_MIRROR_TABLE,
        )

    async def fetch_submission_phones(self, submission_ids: list[str]) -> dict[str, str]:
        """Map submission id -> contact phone, for checks stored without a phone."""
        if not submission_ids:
            return {}
        try:
            rows = await self.client.select(
                FORM_SUBMISSIONS_TABLE,
                columns="id,contact_phone,contact_cpf",
                filters={"id": in_(sorted(set(submission_ids)))},
            )
        except SourceUnavailable as e:
            logger.warning(f"[FETCH] Could not look up submission phones: {e}")
            return {}
        phones = {str(r["id"]): r["contact_phone"] for r in rows if r.get("contact_phone")}
        logger.info(f"[FETCH] Found {len(phones)} phones via form submissions")
        return phones

    async def fetch_meetings(self, tenant_id: str) -> SourceIndex[MeetingRecord]:
        """Read meetings from both meeting tables, merging rows per phone."""
        merged: dict[str, dict[str, Any]] = {}
        unkeyed: list[dict[str, Any]] = []
        for table in MEETING_TABLES:
            try:
                rows = await self._select_for_tenant(
                    table, tenant_id, order="created_at", tenant_column_optional=True
                )
            except SourceUnavailable as e:
                logger.info(f"[FETCH] Meeting table {table} unavailable: {e}")
                continue
            for row in rows:
                row = {**row, "status": normalize_meeting_status(row.get("status"))}
                phone_key = normalize_phone(row.get("telefone_normalizado") or row.get("telefone"))
                if phone_key:
                    merged[phone_key] = merge_meeting_rows(merged.get(phone_key), row)
                else:
                    unkeyed.append(row)

        index: SourceIndex[MeetingRecord] = SourceIndex("meetings")
        for phone_key, row in merged.items():
            if row.get("id") is None and row.get("id_reuniao") is None:
                row = {**row, "id": f"meeting-{phone_key}"}
            index.add(meeting_from_row(row), phone=phone_key)
        for row in unkeyed:
            if row.get("id") is None and row.get("id_reuniao") is None:
                logger.warning("[FETCH] Skipping meeting row without id or phone")
                continue
            index.add(meeting_from_row(row))
        logger.info(f"[FETCH] Loaded {len(index)} meetings")
        return index

    async def fetch_form_dispatches(self, tenant_id: str) -> SourceIndex[FormDispatchRecord]:
        index: SourceIndex[FormDispatchRecord] = SourceIndex("dispatches")
        try:
            rows = await self._select_for_tenant(
                FORM_DISPATCH_TABLE, tenant_id, order="created_at", include_legacy=True
            )
        except SourceUnavailable as e:
            level = logging.INFO if e.missing_table else logging.WARNING
            logger.log(level, f"[FETCH] Form dispatches unavailable: {e}")
            return index

        for dispatch in _convert_rows(rows, dispatch_from_row, FORM_DISPATCH_TABLE):
            index.add(dispatch, phone=dispatch.telefone_normalizado)
        logger.info(f"[FETCH] Loaded {len(index)} form dispatches")
        return index

    async def fetch_dashboard(self, tenant_id: str) -> SourceIndex[DashboardRecord]:
        """Read the engagement dashboard view, one record per phone (newest contact wins).

        The view is optional; rows without a usable phone are skipped.
        """
        index: SourceIndex[DashboardRecord] = SourceIndex("dashboard")
        try:
            rows = await self._select_for_tenant(DASHBOARD_TABLE, tenant_id, order="ultimo_contato")
        except SourceUnavailable as e:
            level = logging.INFO if e.missing_table else logging.WARNING
            logger.log(level, f"[FETCH] Dashboard unavailable: {e}")
            return index

        for row in rows:
            phone_key = normalize_phone(row.get("telefone"))
            if not phone_key or phone_key in index.by_phone:
                continue
            try:
                index.add(dashboard_from_row(row), phone=phone_key)
            except (TypeError, ValueError) as e:
                logger.warning(f"[FETCH] Skipping unreadable {DASHBOARD_TABLE} row {row.get('id')}: {e}")
        logger.info(f"[FETCH] Loaded {len(index)} dashboard records")
        return index

    async def fetch_all(self, tenant_id: str) -> SourceBundle:
        """Fetch every source concurrently."""
        contacts, forms, compliance, meetings, dispatches, dashboard = await asyncio.gather(
            self.fetch_contacts(tenant_id),
            self.fetch_form_submissions(tenant_id),
            self.fetch_compliance_checks(tenant_id),
            self.fetch_meetings(tenant_id),
            self.fetch_form_dispatches(tenant_id),
            self.fetch_dashboard(tenant_id),
        )
        return SourceBundle(
            contacts=contacts,
            forms=forms,
            compliance=compliance,
            meetings=meetings,
            dispatches=dispatches,
            dashboard=dashboard,
        )
