"""Lead journey aggregation.

Merges contacts, form submissions, compliance checks, meetings, form
dispatches and dashboard engagement data into one ``LeadJourney`` per lead:

1. Every normalized phone key seen in any source seeds a journey. Phones that
   have a contact go first so contacts claim their forms and checks before
   bare phone keys do. Contacts, meetings, dispatches and dashboard rows
   sharing a phone collapse into the newest; the older ids stay on the
   journey as ``collapsed_record_ids``.
2. Per phone key, forms and compliance checks are picked by CPF, then phone,
   then name, among records filed under that phone or under none. Each
   record is claimed at most once, so every phone key keeps its own records.
3. Records nothing claimed become orphan journeys, still trying CPF → phone →
   name against the remaining records of the other sources.
4. Journeys are classified, given a timeline and sorted by ``updated_at`` desc.
"""

import logging
from datetime import datetime
from typing import Callable

from leadpipe.core.dates import utcnow
from leadpipe.core.identity import normalize_cpf, normalize_name
from leadpipe.core.phone import mask_phone, normalize_phone
from leadpipe.domain.models import (
    ComplianceCheckRecord,
    ContactRecord,
    DashboardRecord,
    FormDispatchRecord,
    FormSubmissionRecord,
    LeadJourney,
    MatchLevel,
    MeetingRecord,
    PipelineStage,
)
from leadpipe.domain.services.matching import (
    IDENTITY_CHAIN,
    PHONE_ONLY_CHAIN,
    MatchKeys,
    first_match,
)
from leadpipe.domain.services.pipeline_classifier import classify, stage_label
from leadpipe.domain.services.source_fetchers import SourceBundle, SourceFetchers, SourceIndex
from leadpipe.domain.services.timeline import build_timeline

logger = logging.getLogger(__name__)

UNNAMED = "Sem nome"


def _claim_phone_group(index: SourceIndex, phone_key: str, collapsed: dict[str, list[str]]):
    """Claim every unconsumed record under a phone key and return the newest.

    Ids of the older records are added to ``collapsed`` under the source name.
    """
    group = [r for r in index.by_phone.get(phone_key, []) if not index.is_consumed(r)]
    for record in group:
        index.claim(record)
    if len(group) > 1:
        collapsed[index.source] = [r.id for r in group[1:]]
    return group[0] if group else None


def _claim_match(index: SourceIndex, keys: MatchKeys, chain=IDENTITY_CHAIN, accept=None):
    record, level = first_match(index, keys, chain, accept)
    if record is not None:
        index.claim(record)
    return record, level


def _filed_under(index: SourceIndex, phone_key: str) -> Callable:
    """Accept records filed under this phone or under no phone at all.

    A record filed under another phone seeds its own journey, so it is never
    pulled in here by CPF or name.
    """
    return lambda record: index.phone_key_of(record) in ("", phone_key)


def _contact_name(contact: ContactRecord | None) -> str | None:
    if contact is None or contact.nome == UNNAMED:
        return None
    return contact.nome


def _latest(*values: datetime | None) -> datetime | None:
    present = [v for v in values if v is not None]
    return max(present) if present else None


def build_journey(
    tenant_id: str,
    phone_key: str,
    *,
    journey_id: str | None = None,
    contact: ContactRecord | None = None,
    form: FormSubmissionRecord | None = None,
    check: ComplianceCheckRecord | None = None,
    meeting: MeetingRecord | None = None,
    dispatch: FormDispatchRecord | None = None,
    dashboard: DashboardRecord | None = None,
    match_levels: dict[str, MatchLevel] | None = None,
    collapsed_record_ids: dict[str, list[str]] | None = None,
    is_orphan: bool = False,
    now: datetime | None = None,
) -> LeadJourney:
    """Combine per-source records into a classified journey."""
    now = now or utcnow()
    nome = (
        _contact_name(contact)
        or (form.contact_name if form else None)
        or (check.person_name if check else None)
        or (dispatch.nome if dispatch else None)
        or (dashboard.nome if dashboard else None)
        or UNNAMED
    )
    telefone = (
        (contact.telefone if contact else None)
        or (form.contact_phone if form else None)
        or (check.person_phone if check else None)
        or (dispatch.telefone if dispatch else None)
        or phone_key
    )
    created_at = (
        (contact.created_at if contact else None)
        or (form.created_at if form else None)
        or (check.consulted_at if check else None)
        or (dispatch.created_at if dispatch else None)
        or (meeting.created_at if meeting else None)
    )
    updated_at = _latest(
        contact.updated_at if contact else None,
        form.updated_at if form else None,
        check.consulted_at if check else None,
        dispatch.updated_at if dispatch else None,
        meeting.updated_at if meeting else None,
    ) or created_at

    journey = LeadJourney(
        id=journey_id or (contact.id if contact else None) or (form.id if form else None) or f"phone-{phone_key}",
        tenant_id=(contact.tenant_id if contact else None) or (form.tenant_id if form else None) or tenant_id,
        telefone=telefone,
        telefone_normalizado=phone_key,
        nome=nome,
        email=(contact.email if contact else None) or (form.contact_email if form else None)
        or (dispatch.email if dispatch else None),
        cpf=(contact.cpf if contact else None) or (form.contact_cpf if form else None)
        or (check.cpf if check and check.cpf else None),
        contact=contact,
        form=form,
        cpf_data=check,
        meeting=meeting,
        form_dispatch=dispatch,
        dashboard=dashboard,
        created_at=created_at,
        updated_at=updated_at,
        is_orphan=is_orphan,
        match_levels=match_levels or {},
        collapsed_record_ids=collapsed_record_ids or {},
    )
    journey.pipeline_status = classify(journey, now)
    journey.pipeline_stage_label = stage_label(journey.pipeline_status)
    journey.timeline = build_timeline(journey, now)
    return journey


def _ordered_phone_keys(bundle: SourceBundle) -> list[str]:
    contact_keys = set(bundle.contacts.phone_keys())
    other_keys: set[str] = set()
    for index in (bundle.forms, bundle.compliance, bundle.meetings, bundle.dispatches, bundle.dashboard):
        other_keys.update(index.phone_keys())
    return sorted(contact_keys) + sorted(other_keys - contact_keys)


def _journeys_by_phone(tenant_id: str, bundle: SourceBundle, now: datetime) -> list[LeadJourney]:
    journeys = []
    for phone_key in _ordered_phone_keys(bundle):
        collapsed: dict[str, list[str]] = {}
        contact = _claim_phone_group(bundle.contacts, phone_key, collapsed)
        contact_cpf = normalize_cpf(contact.cpf) if contact else ""
        contact_name = normalize_name(_contact_name(contact))
        levels: dict[str, MatchLevel] = {}

        form, level = _claim_match(
            bundle.forms,
            MatchKeys(cpfs=(contact_cpf,), phone=phone_key, names=(contact_name,)),
            accept=_filed_under(bundle.forms, phone_key),
        )
        if level:
            levels["form"] = level

        check, level = _claim_match(
            bundle.compliance,
            MatchKeys(
                cpfs=(contact_cpf, normalize_cpf(form.contact_cpf) if form else ""),
                phone=phone_key,
                names=(contact_name, normalize_name(form.contact_name) if form else ""),
            ),
            accept=_filed_under(bundle.compliance, phone_key),
        )
        if level:
            levels["cpf"] = level

        meeting = _claim_phone_group(bundle.meetings, phone_key, collapsed)
        if meeting is None and contact is not None:
            meeting = contact.meeting
        dispatch = _claim_phone_group(bundle.dispatches, phone_key, collapsed)
        dashboard = _claim_phone_group(bundle.dashboard, phone_key, collapsed)

        if not any((contact, form, check, meeting, dispatch, dashboard)):
            continue

        journeys.append(
            build_journey(
                tenant_id,
                phone_key,
                contact=contact,
                form=form,
                check=check,
                meeting=meeting,
                dispatch=dispatch,
                dashboard=dashboard,
                match_levels=levels,
                collapsed_record_ids=collapsed,
                now=now,
            )
        )
    return journeys


def _orphan_journeys(tenant_id: str, bundle: SourceBundle, now: datetime) -> list[LeadJourney]:
    journeys = []

    for check in bundle.compliance.unconsumed():
        bundle.compliance.claim(check)
        phone_key = normalize_phone(check.person_phone)
        check_name = normalize_name(check.person_name)
        levels: dict[str, MatchLevel] = {}

        contact, level = _claim_match(
            bundle.contacts, MatchKeys(cpfs=(check.cpf,), phone=phone_key, names=(check_name,))
        )
        if level:
            levels["contact"] = level
        form, level = _claim_match(
            bundle.forms,
            MatchKeys(
                cpfs=(check.cpf, normalize_cpf(contact.cpf) if contact else ""),
                phone=phone_key,
                names=(check_name, normalize_name(_contact_name(contact))),
            ),
        )
        if level:
            levels["form"] = level
        dispatch, _ = _claim_match(bundle.dispatches, MatchKeys(phone=phone_key), PHONE_ONLY_CHAIN)

        logger.info(
            f"[JOURNEY] Orphan compliance check {check.effective_check_id} "
            f"(phone={mask_phone(phone_key) or '-'}, linked={sorted(levels) or 'none'})"
        )
        journeys.append(
            build_journey(
                tenant_id,
                phone_key or (contact.telefone_normalizado if contact else ""),
                journey_id=f"cpf-{check.effective_check_id}",
                contact=contact,
                form=form,
                check=check,
                meeting=contact.meeting if contact else None,
                dispatch=dispatch,
                match_levels=levels,
                is_orphan=True,
                now=now,
            )
        )

    for form in bundle.forms.unconsumed():
        bundle.forms.claim(form)
        phone_key = normalize_phone(form.contact_phone)
        contact, level = _claim_match(
            bundle.contacts,
            MatchKeys(
                cpfs=(normalize_cpf(form.contact_cpf),),
                phone=phone_key,
                names=(normalize_name(form.contact_name),),
            ),
        )
        logger.info(f"[JOURNEY] Orphan form submission {form.id}")
        journeys.append(
            build_journey(
                tenant_id,
                phone_key,
                journey_id=f"submission-{form.id}",
                contact=contact,
                form=form,
                meeting=contact.meeting if contact else None,
                match_levels={"contact": level} if level else {},
                is_orphan=True,
                now=now,
            )
        )

    for contact in bundle.contacts.unconsumed():
        bundle.contacts.claim(contact)
        journeys.append(
            build_journey(
                tenant_id, "", contact=contact, meeting=contact.meeting, is_orphan=True, now=now
            )
        )

    for meeting in bundle.meetings.unconsumed():
        bundle.meetings.claim(meeting)
        journeys.append(
            build_journey(
                tenant_id, "", journey_id=f"meeting-{meeting.id}", meeting=meeting, is_orphan=True, now=now
            )
        )

    for dispatch in bundle.dispatches.unconsumed():
        bundle.dispatches.claim(dispatch)
        journeys.append(
            build_journey(
                tenant_id,
                dispatch.telefone_normalizado,
                journey_id=f"envio-{dispatch.id}",
                dispatch=dispatch,
                is_orphan=True,
                now=now,
            )
        )

    return journeys


def _recency_key(journey: LeadJourney) -> tuple[int, float]:
    # Most recent first, journeys without timestamps last
    if journey.updated_at is None:
        return (1, 0.0)
    return (0, -journey.updated_at.timestamp())


def assemble_journeys(
    tenant_id: str,
    bundle: SourceBundle,
    now: datetime | None = None,
) -> list[LeadJourney]:
    """Build every journey for a tenant from already-fetched sources."""
    now = now or utcnow()
    journeys = _journeys_by_phone(tenant_id, bundle, now)
    orphans = _orphan_journeys(tenant_id, bundle, now)
    if orphans:
        logger.info(f"[JOURNEY] Added {len(orphans)} orphan journeys")
    return sorted(journeys + orphans, key=_recency_key)


class JourneyAggregator:
    """Read-side operations over freshly aggregated journeys."""

    def __init__(self, fetchers: SourceFetchers, clock: Callable[[], datetime] = utcnow) -> None:
        self.fetchers = fetchers
        self.clock = clock

    async def aggregate_lead_journeys(self, tenant_id: str) -> list[LeadJourney]:
        """Aggregate all journeys of a tenant, newest first. Never raises for data problems."""
        if not tenant_id or not tenant_id.strip():
            logger.error("[JOURNEY] tenant_id is required")
            return []

        logger.info(f"[JOURNEY] Aggregating journeys for tenant {tenant_id}")
        bundle = await self.fetchers.fetch_all(tenant_id)
        journeys = assemble_journeys(tenant_id, bundle, self.clock())
        logger.info(f"[JOURNEY] Built {len(journeys)} journeys for tenant {tenant_id}")
        return journeys

    async def get_lead_journey_by_phone(self, tenant_id: str, phone: str) -> LeadJourney | None:
        phone_key = normalize_phone(phone)
        if not phone_key:
            return None
        journeys = await self.aggregate_lead_journeys(tenant_id)
        return next((j for j in journeys if j.telefone_normalizado == phone_key), None)

    async def get_lead_journeys_by_stage(
        self, tenant_id: str, stage: PipelineStage | str
    ) -> list[LeadJourney]:
        try:
            stage = PipelineStage(stage)
        except ValueError:
            logger.warning(f"[JOURNEY] Unknown pipeline stage {stage!r}")
            return []
        journeys = await self.aggregate_lead_journeys(tenant_id)
        return [j for j in journeys if j.pipeline_status == stage]

    async def get_pipeline_stage_counts(self, tenant_id: str) -> dict[str, int]:
        """Count journeys per stage; every stage is present, zero when empty."""
        counts = {stage.value: 0 for stage in PipelineStage}
        for journey in await self.aggregate_lead_journeys(tenant_id):
            counts[journey.pipeline_status.value] += 1
        return counts
