"""
Transfer repair job.

Runs repository realignment live through the job lock, so identity
migrations never interleave with a sync, backup or restore.
"""

import logging
from typing import Any

from ghmirror.core.config.loader import get_jobs_config
from ghmirror.core.github.realignment import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_LIMIT,
    RepositoryRealigner,
)
from ghmirror.core.jobs.scheduler import JobContext

logger = logging.getLogger(__name__)


class TransferService:
    def __init__(self, realigner: RepositoryRealigner) -> None:
        self.realigner = realigner
        realignment_config = get_jobs_config().get("realignment", {})
        self.default_limit = int(realignment_config.get("limit", DEFAULT_LIMIT))
        self.default_chunk_size = int(
            realignment_config.get("chunk_size", DEFAULT_CHUNK_SIZE)
        )

    async def run_job(self, context: JobContext) -> dict[str, Any]:
        """
        Job handler. Honors ``dry_run``, ``chunk_size``, ``limit`` and
        ``ids`` from the run parameters.
        """
        params = context.params
        summary = await self.realigner.run(
            dry_run=bool(params.get("dry_run", False)),
            chunk_size=int(params.get("chunk_size") or self.default_chunk_size),
            limit=int(params.get("limit") or self.default_limit),
            ids=params.get("ids"),
        )
        return {
            "candidates": summary.candidates,
            "updated": summary.updated,
            "migrated": summary.migrated,
            "unresolved": summary.unresolved,
            "dryRun": summary.dry_run,
            "passes": summary.passes,
        }
