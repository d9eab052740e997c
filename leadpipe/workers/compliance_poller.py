"""Compliance reconciliation poller.

Keeps approved/rejected CPF results in sync with the local leads:

1. Pending results come from ``cpf_compliance_results``. The full schema is
   filtered remotely (phone present, not yet processed, terminal status);
   older schemas without those columns are read with basic columns and have
   their phone backfilled from ``form_submissions`` by CPF. Locally marked ids
   are always skipped.
2. Each result resolves to leads by exact CPF, falling back to phone. Every
   matched lead gets the status, pipeline stage and label.
3. The result is marked processed once all its leads were updated, or right
   away when nothing matches.

Every run then reconciles recent checks from the provider mirror table the
same way, matched by CPF, then submission id, then the submission's phone.
Mirror checks carry local ``datacorp:`` markers, so a run on unchanged data
processes nothing from either source.

Runs are single-flight: a tick that arrives while a run is in progress is
skipped, not queued.
"""

import asyncio
import contextlib
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from leadpipe.core.dates import utcnow
from leadpipe.core.encryption import EncryptionService, get_encryption_service
from leadpipe.core.equivalence import COMPLIANCE_TERMINAL_STATUSES
from leadpipe.core.identity import mask_cpf, normalize_cpf
from leadpipe.core.phone import mask_phone
from leadpipe.domain.models import ComplianceCheckRecord
from leadpipe.domain.services.lead_status_service import SYNTHETIC_CHECK_PREFIX, LeadStatusService
from leadpipe.domain.services.processed_marker_store import (
    PROCESSED_COLUMN,
    RESULTS_TABLE,
    ProcessedMarkerStore,
)
from leadpipe.domain.services.source_fetchers import (
    COMPLIANCE_MIRROR_TABLE,
    FORM_SUBMISSIONS_TABLE,
    compliance_from_mirror_row,
    compliance_from_row,
)
from leadpipe.infrastructure.remote_data_client import (
    RemoteDataClient,
    SourceUnavailable,
    gte,
    in_,
    is_null,
    not_null,
)
from leadpipe.persistence.models.lead import Lead
from leadpipe.settings import settings

logger = logging.getLogger(__name__)

STATE_FILENAME = "cpf_compliance_poller_state.json"
BASIC_RESULT_COLUMNS = "id,cpf,nome,status,dados,risco,processos,aprovado,data_consulta,check_id"
MIRROR_WINDOW = timedelta(hours=24)
MIRROR_BATCH_SIZE = 20
MIRROR_MARKER_PREFIX = "datacorp:"


class PollerModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PollerState(PollerModel):
    """Counters persisted between runs and restarts."""

    last_polled_at: datetime | None = None
    total_processed: int = 0
    total_errors: int = 0
    last_error: str | None = None


class PollResult(PollerModel):
    """Outcome of one reconciliation run."""

    success: bool
    processed_count: int = 0
    error: str | None = None
    skipped: bool = False


class CompliancePoller:
    """Timer-driven, single-flight reconciliation of compliance results."""

    def __init__(
        self,
        client: RemoteDataClient,
        lead_status: LeadStatusService,
        marker_store: ProcessedMarkerStore | None = None,
        encryption: EncryptionService | None = None,
        interval_minutes: float | None = None,
        batch_size: int | None = None,
        state_path: Path | str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.lead_status = lead_status
        self.marker_store = marker_store or ProcessedMarkerStore(client)
        self.encryption = encryption or get_encryption_service()
        self.interval_minutes = (
            interval_minutes if interval_minutes is not None else settings.compliance_poll_interval_minutes
        )
        self.batch_size = batch_size or settings.compliance_poll_batch_size
        self.state_path = Path(state_path) if state_path else Path(settings.data_dir) / STATE_FILENAME
        self.clock = clock

        self.state = self._load_state()
        self._polling = False
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_polling(self) -> bool:
        return self._polling

    def start(self) -> None:
        """Run once immediately, then every interval, until ``stop()``."""
        if self.is_started:
            logger.info("[POLLER] Already started")
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"[POLLER] Started, interval {self.interval_minutes} min")

    async def stop(self) -> None:
        """Stop the timer. An in-flight run finishes first."""
        if self._task is None:
            return
        self._stop_event.set()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("[POLLER] Stopped")

    async def _run_loop(self) -> None:
        interval_seconds = self.interval_minutes * 60
        while not self._stop_event.is_set():
            await self.poll_once()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _load_state(self) -> PollerState:
        if not self.state_path.exists():
            return PollerState()
        try:
            state = PollerState.model_validate_json(self.state_path.read_text(encoding="utf-8"))
            logger.info(f"[POLLER] State loaded: {state.total_processed} results processed so far")
            return state
        except (OSError, ValueError) as e:
            logger.error(f"[POLLER] Could not load state from {self.state_path}: {e}")
            return PollerState()

    def _save_state(self) -> None:
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            self.state_path.write_text(
                json.dumps(self.state.model_dump(mode="json", by_alias=True), indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error(f"[POLLER] Could not save state: {e}")

    def get_state(self) -> PollerState:
        return self.state.model_copy()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def poll_once(self) -> PollResult:
        """Run one reconciliation pass.

        Returns:
            ``PollResult``; ``skipped`` when another run is in progress and
            ``error`` when the whole batch failed
        """
        if self._polling:
            logger.info("[POLLER] Previous run still in progress, skipping this tick")
            return PollResult(success=True, skipped=True)

        self._polling = True
        marked_this_run: set[str] = set()
        try:
            self.state.last_polled_at = self.clock()
            processed_count = 0

            if self.client.is_configured:
                for result in await self.fetch_pending_results():
                    if await self._run_guarded(self._process_result, result, marked_this_run):
                        processed_count += 1

                for check in await self.fetch_recent_mirror_checks():
                    if await self._run_guarded(self._process_mirror_check, check, marked_this_run):
                        processed_count += 1
            else:
                logger.info("[POLLER] Remote Data API not configured, nothing to poll")

            self.state.total_processed += processed_count
            self.state.last_error = None
            self._save_state()
            if processed_count:
                logger.info(f"[POLLER] Processed {processed_count} result(s)")
            return PollResult(success=True, processed_count=processed_count)

        except Exception as e:
            logger.error(f"[POLLER] Run failed: {e}", exc_info=True)
            self.state.last_error = str(e)
            self.state.total_errors += 1
            self._save_state()
            return PollResult(success=False, error=str(e))
        finally:
            self._polling = False

    async def _run_guarded(self, handler, record: ComplianceCheckRecord, marked_this_run: set[str]) -> bool:
        """Run a per-result handler; failures are counted, never raised."""
        try:
            ok = await handler(record, marked_this_run)
        except Exception as e:
            logger.error(f"[POLLER] Failed to process result {record.id}: {e}", exc_info=True)
            ok = False
        if not ok:
            self.state.total_errors += 1
        return ok

    async def _mark_once(self, marker_id: str, marked_this_run: set[str], *, remote: bool) -> None:
        if marker_id in marked_this_run:
            return
        await self.marker_store.mark_processed(marker_id, remote=remote)
        marked_this_run.add(marker_id)

    async def _apply_to_leads(self, leads: list[Lead], record: ComplianceCheckRecord, check_id: str) -> bool:
        cpf_status = "approved" if record.status == "approved" else "rejected"
        all_updated = True
        for lead in leads:
            updated = await self.lead_status.apply_lead_update(
                lead.id, cpf_status, check_id=check_id, checked_at=self.clock()
            )
            all_updated = all_updated and updated
        return all_updated

    # ------------------------------------------------------------------
    # Results table
    # ------------------------------------------------------------------

    async def fetch_pending_results(self) -> list[ComplianceCheckRecord]:
        """Pending terminal results, full schema first, then basic columns with phone backfill."""
        local_ids = self.marker_store.local_ids()
        try:
            rows = await self.client.select(
                RESULTS_TABLE,
                filters={"telefone": not_null(), "status": in_(COMPLIANCE_TERMINAL_STATUSES)},
                or_filter=[(PROCESSED_COLUMN, is_null()), (PROCESSED_COLUMN, False)],
                order="data_consulta",
                limit=self.batch_size,
            )
            pending = [r for r in rows if str(r.get("id")) not in local_ids]
            if pending:
                return self._to_records(pending)
        except SourceUnavailable as e:
            if not e.missing_column:
                raise
            logger.info(f"[POLLER] {RESULTS_TABLE} lacks phone/processed columns: {e.message}")

        return await self._fetch_pending_basic(local_ids)

    async def _fetch_pending_basic(self, local_ids: set[str]) -> list[ComplianceCheckRecord]:
        select_args = dict(
            columns=BASIC_RESULT_COLUMNS,
            filters={"status": in_(COMPLIANCE_TERMINAL_STATUSES)},
            order="data_consulta",
            limit=self.batch_size,
        )
        try:
            rows = await self.client.select(
                RESULTS_TABLE,
                or_filter=[(PROCESSED_COLUMN, is_null()), (PROCESSED_COLUMN, False)],
                **select_args,
            )
        except SourceUnavailable as e:
            if not e.missing_column:
                raise
            rows = await self.client.select(RESULTS_TABLE, **select_args)

        pending = [r for r in rows if str(r.get("id")) not in local_ids]
        records = self._to_records(pending)
        for record in records:
            if not record.person_phone and record.cpf:
                record.person_phone = await self.find_phone_by_cpf(record.cpf)
        return records

    def _to_records(self, rows: list[dict]) -> list[ComplianceCheckRecord]:
        records = []
        for row in rows:
            if row.get("id") is None:
                continue
            records.append(compliance_from_row(row, RESULTS_TABLE, self.encryption))
        return records

    async def find_phone_by_cpf(self, cpf: str) -> str | None:
        """Phone of the newest form submission with this CPF."""
        submission = await self._find_submission_by_cpf(cpf)
        return submission.get("contact_phone") if submission else None

    async def _find_submission_by_cpf(self, cpf: str) -> dict | None:
        cpf_key = normalize_cpf(cpf)
        if not cpf_key:
            return None
        try:
            rows = await self.client.select(
                FORM_SUBMISSIONS_TABLE,
                columns="id,contact_phone",
                filters={"contact_cpf": cpf_key},
                order="created_at",
                limit=1,
            )
        except SourceUnavailable as e:
            logger.warning(f"[POLLER] Submission lookup by CPF failed: {e}")
            return None
        if not rows or not rows[0].get("contact_phone"):
            return None
        return rows[0]

    async def _process_result(self, result: ComplianceCheckRecord, marked_this_run: set[str]) -> bool:
        logger.info(f"[POLLER] Processing result #{result.id} ({result.status})")
        leads = await self.lead_status.resolve_leads(result.cpf, result.person_phone)

        if not leads:
            logger.info(
                f"[POLLER] No lead for CPF {mask_cpf(result.cpf) or '-'} "
                f"or phone {mask_phone(result.person_phone) or '-'}; marking #{result.id} processed"
            )
            await self._mark_once(result.id, marked_this_run, remote=True)
            return True

        check_id = result.check_id or f"{SYNTHETIC_CHECK_PREFIX}{result.id}"
        if not await self._apply_to_leads(leads, result, check_id):
            return False

        await self._mark_once(result.id, marked_this_run, remote=True)
        return True

    # ------------------------------------------------------------------
    # Provider mirror fallback
    # ------------------------------------------------------------------

    async def fetch_recent_mirror_checks(self) -> list[ComplianceCheckRecord]:
        """Terminal mirror checks updated in the last 24 hours and not yet reconciled."""
        since = self.clock() - MIRROR_WINDOW
        try:
            rows = await self.client.select(
                COMPLIANCE_MIRROR_TABLE,
                filters={"status": in_(COMPLIANCE_TERMINAL_STATUSES), "updated_at": gte(since)},
                order="updated_at",
                descending=False,
                limit=MIRROR_BATCH_SIZE,
            )
        except SourceUnavailable as e:
            logger.warning(f"[POLLER] Compliance mirror unavailable: {e}")
            return []

        local_ids = self.marker_store.local_ids()
        checks = []
        for row in rows:
            if row.get("id") is None or f"{MIRROR_MARKER_PREFIX}{row['id']}" in local_ids:
                continue
            checks.append(compliance_from_mirror_row(row, self.encryption))
        return checks

    async def _process_mirror_check(self, check: ComplianceCheckRecord, marked_this_run: set[str]) -> bool:
        marker_id = f"{MIRROR_MARKER_PREFIX}{check.id}"
        leads = await self.lead_status.find_leads_by_cpf(check.cpf)

        if not leads and check.submission_id:
            lead = await self.lead_status.find_lead_by_submission_id(check.submission_id, check.tenant_id)
            leads = [lead] if lead else []

        if not leads and check.cpf:
            submission = await self._find_submission_by_cpf(check.cpf)
            if submission:
                leads = await self.lead_status.find_leads_by_phone(submission["contact_phone"])

        if leads and not await self._apply_to_leads(leads, check, check.id):
            return False

        if not leads:
            logger.info(f"[POLLER] No lead for mirror check {check.id}")
        await self._mark_once(marker_id, marked_this_run, remote=False)
        return True
