"""Controller script to run a reindex job from the command line."""

# --- CRITICAL: Set spawn method BEFORE any imports that may open sockets ---
import multiprocessing as mp

if mp.get_start_method(allow_none=True) != "spawn":
    mp.set_start_method("spawn", force=True)
# ---------------------------------------------------------------------------

import argparse
import asyncio
import signal
import sys
from typing import Any
from uuid import UUID

from solr_reindex.config import Settings, get_settings
from solr_reindex.core.exceptions import ReindexError
from solr_reindex.core.logging import get_logger, setup_logging
from solr_reindex.core.models import ExecutionHandle
from solr_reindex.reindex.dispatcher import ExecutionDispatcher
from solr_reindex.reindex.factory import build_backend, open_registry
from solr_reindex.reindex.models import (
    BackoffPolicy,
    ClusterConfig,
    FieldSelection,
    JobState,
    JobStatus,
    ReindexJobSpec,
)
from solr_reindex.reindex.registry import JobRegistry

logger = get_logger(__name__)


class ReindexController:
    """Creates (or picks up) one job, dispatches it and monitors it to the end."""

    def __init__(self, settings: Settings, args: argparse.Namespace):
        self.settings = settings
        self.args = args

        self.registry: JobRegistry | None = None
        self.dispatcher: ExecutionDispatcher | None = None
        self.handle: ExecutionHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    # ---------------- Connection management ----------------

    async def open(self) -> None:
        logger.info(
            f"Opening {self.settings.registry_backend} registry with "
            f"{self.settings.execution_backend} execution backend..."
        )
        self.registry = await open_registry(self.settings)
        self.dispatcher = ExecutionDispatcher(
            self.registry,
            build_backend(self.settings, self.registry),
            liveness_timeout=self.settings.liveness_timeout_seconds,
        )

    async def close(self) -> None:
        if self.dispatcher is not None:
            await self.dispatcher.shutdown()
        self.dispatcher = None
        self.registry = None
        logger.info("Controller closed")

    # ---------------- Signals ----------------

    def register_signal_handlers(self) -> None:
        """First signal pauses the job at the next batch boundary."""
        self._loop = asyncio.get_running_loop()

        def signal_handler(signum: int, _frame: Any) -> None:
            logger.warning(f"Received signal {signum}, pausing job after the current batch...")
            if self._loop is not None and self.handle is not None and self.dispatcher is not None:
                self._loop.call_soon_threadsafe(
                    asyncio.ensure_future, self.dispatcher.cancel(self.handle)
                )

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    # ---------------- Planning ----------------

    def build_spec(self) -> ReindexJobSpec:
        args = self.args
        return ReindexJobSpec(
            source_collection=args.source,
            target_collection=args.target,
            query=args.query,
            filter_queries=args.fq or [],
            source_shards=args.source_shard or [],
            fields=FieldSelection.of(args.fields),
            sort_field=args.sort_field,
            id_field=args.id_field,
            batch_size=args.batch_size or self.settings.default_batch_size,
            max_retries=(
                args.max_retries
                if args.max_retries is not None
                else self.settings.default_max_retries
            ),
            backoff=BackoffPolicy(
                initial_seconds=self.settings.default_backoff_initial_seconds,
                max_seconds=self.settings.default_backoff_max_seconds,
            ),
            drop_fields=args.drop_field or [],
            commit_each_batch=not args.no_commit,
            source_cluster=self._cluster(args.source_url),
            target_cluster=self._cluster(args.target_url),
        )

    def _cluster(self, url: str | None) -> ClusterConfig | None:
        if url is None:
            return None
        has_auth = self.settings.solr_username and self.settings.solr_password
        return ClusterConfig(
            base_url=url,
            request_timeout=self.settings.solr_request_timeout,
            username=self.settings.solr_username if has_auth else None,
            password=self.settings.solr_password if has_auth else None,
        )

    async def get_or_create_job(self) -> UUID:
        """Job to run: an existing one (``--job-id``) or a newly created one."""
        if self.registry is None:
            raise RuntimeError("Registry not initialized")

        if self.args.job_id:
            job_id = UUID(self.args.job_id)
            state = await self.registry.get(job_id)
            logger.info(
                f"Picking up job {job_id}: {state.status.value}, "
                f"{state.docs_copied:,} documents copied, cursor {state.cursor}"
            )
            return job_id

        spec = self.build_spec()
        return await self.registry.create(spec)

    # ---------------- Orchestration ----------------

    async def run(self) -> JobState:
        """Dispatch the job and watch it until its execution unit exits."""
        try:
            await self.open()
            assert self.dispatcher is not None

            job_id = await self.get_or_create_job()
            self.register_signal_handlers()
            self.handle = await self.dispatcher.submit(job_id)

            state = await self.dispatcher.watch(
                self.handle, poll_interval=self.settings.monitor_interval_seconds
            )
            logger.info(
                f"Job {state.id} finished as {state.status.value}: "
                f"{state.docs_copied:,} documents in {state.batches} batches"
            )
            if state.last_error:
                logger.error(
                    f"Job {state.id} last error ({state.failure_kind}): {state.last_error}"
                )
            return state

        except asyncio.CancelledError:
            logger.warning("Controller cancelled")
            raise
        except Exception as e:
            logger.error(f"Controller error: {e}", exc_info=True)
            raise
        finally:
            await self.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Copy a Solr collection into another one.")
    parser.add_argument("--job-id", help="Resume an existing paused or pending job")
    parser.add_argument("--source", help="Source collection")
    parser.add_argument("--target", help="Target collection")
    parser.add_argument("--query", default=None, help="Main query (default *:*)")
    parser.add_argument("--fq", action="append", help="Filter query, repeatable")
    parser.add_argument("--source-shard", action="append", help="Source shard to read, repeatable")
    parser.add_argument("--source-url", help="Source cluster URL (default: SOLR_SOURCE_URL)")
    parser.add_argument("--target-url", help="Target cluster URL (default: the source cluster)")
    parser.add_argument("--fields", nargs="+", help="Fields to copy (default: all)")
    parser.add_argument("--drop-field", action="append", help="Field not to copy, repeatable")
    parser.add_argument("--sort-field", default="id", help="Monotonic sort key")
    parser.add_argument("--id-field", default="id", help="Unique key field")
    parser.add_argument("--batch-size", type=int, help="Documents per batch")
    parser.add_argument("--max-retries", type=int, help="Transient failures tolerated per batch")
    parser.add_argument("--no-commit", action="store_true", help="Skip per-batch commits")
    return parser


async def _run(args: argparse.Namespace) -> JobState:
    controller = ReindexController(get_settings(), args)
    return await controller.run()


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.job_id and not (args.source and args.target):
        parser.error("either --job-id or both --source and --target are required")

    setup_logging()
    try:
        state = asyncio.run(_run(args))
    except ReindexError as e:
        logger.error(f"{e.__class__.__name__}: {e}")
        sys.exit(2)
    sys.exit(0 if state.status in (JobStatus.COMPLETED, JobStatus.PAUSED) else 1)


if __name__ == "__main__":
    main()
