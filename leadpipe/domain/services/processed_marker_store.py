"""Durable "already processed" markers for compliance results.

The primary marker is the ``processado_whatsapp`` column on the results
table. Deployments whose schema predates that column, or whose remote write
fails, fall back to a JSON list of ids in the data directory.
"""

import json
import logging
from pathlib import Path

from leadpipe.infrastructure.remote_data_client import RemoteDataClient, SourceUnavailable
from leadpipe.settings import settings

logger = logging.getLogger(__name__)

RESULTS_TABLE = "cpf_compliance_results"
PROCESSED_COLUMN = "processado_whatsapp"
LOCAL_IDS_FILENAME = "cpf_processed_ids.json"


class ProcessedMarkerStore:
    """Records which compliance results already produced their side effect."""

    def __init__(
        self,
        client: RemoteDataClient,
        path: Path | str | None = None,
        table: str = RESULTS_TABLE,
    ) -> None:
        self.client = client
        self.table = table
        self.path = Path(path) if path else Path(settings.data_dir) / LOCAL_IDS_FILENAME
        self.remote_column_available = True

    def local_ids(self) -> set[str]:
        """Ids marked in the local file. A missing or corrupt file reads as empty."""
        if not self.path.exists():
            return set()
        try:
            return {str(i) for i in json.loads(self.path.read_text(encoding="utf-8"))}
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"[MARKER] Could not read {self.path}: {e}")
            return set()

    def is_processed(self, result_id) -> bool:
        """Check the local marker set.

        Results marked through the remote column are already excluded by the
        pending-results query.
        """
        return str(result_id) in self.local_ids()

    def mark_locally(self, result_id) -> None:
        ids = self.local_ids()
        ids.add(str(result_id))
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(sorted(ids)), encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as e:
            logger.error(f"[MARKER] Could not save processed id {result_id}: {e}", exc_info=True)
            raise

    async def mark_processed(self, result_id, *, remote: bool = True) -> None:
        """Mark a result processed, preferring the remote column.

        Args:
            result_id: Result id (the remote row id, or a prefixed local-only id)
            remote: Whether the id names a row of the results table
        """
        if remote and self.remote_column_available and self.client.is_configured:
            try:
                await self.client.update(
                    self.table, {PROCESSED_COLUMN: True}, filters={"id": result_id}
                )
                return
            except SourceUnavailable as e:
                if e.missing_column:
                    logger.info(f"[MARKER] {self.table} has no {PROCESSED_COLUMN} column, using local file")
                    self.remote_column_available = False
                else:
                    logger.warning(f"[MARKER] Remote mark failed for {result_id}, using local file: {e}")

        self.mark_locally(result_id)
