"""
Run-record store — one document per PipelineRun, written at terminal state.

Backed by a Supabase table via the service role key. Writes are
fire-and-forget from the pipeline's point of view: failures surface as
MetadataPersistenceError and the orchestrator only logs them.
"""

import asyncio
import logging
from typing import Optional

from supabase import Client, create_client

from .config import PipelineSettings
from .errors import MetadataPersistenceError

logger = logging.getLogger(__name__)


class RunRecordStore:
    def __init__(self, settings: PipelineSettings, client: Optional[Client] = None):
        self._settings = settings
        self._client = client

    def _get_client(self) -> Client:
        """Lazy-init Supabase client using service role key."""
        if self._client is None:
            url = self._settings.supabase_url
            key = self._settings.supabase_key
            if not url or not key:
                raise MetadataPersistenceError(
                    "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
                )
            self._client = create_client(url, key)
        return self._client

    def _upsert(self, run_id: str, record: dict):
        row = {**record, "id": run_id}
        self._get_client().table(self._settings.records_table).upsert(row).execute()

    async def put(self, run_id: str, record: dict):
        """Persist (insert or replace) the record for a run."""
        try:
            await asyncio.to_thread(self._upsert, run_id, record)
        except MetadataPersistenceError:
            raise
        except Exception as e:
            raise MetadataPersistenceError(f"Failed to store record for {run_id}: {e}") from e

        logger.info(f"Run record stored: {run_id} ({record.get('status')})")
