"""Worker process that runs one reindex job."""

import argparse
import asyncio
import signal
import sys
from typing import Any
from uuid import UUID

from solr_reindex.config import Settings, get_settings
from solr_reindex.core.exceptions import OwnershipLostError
from solr_reindex.core.logging import get_logger, setup_logging
from solr_reindex.reindex.copier import BatchCopier
from solr_reindex.reindex.models import JobState, JobStatus
from solr_reindex.reindex.registry import JobRegistry
from solr_reindex.reindex.state_machine import ReindexJobStateMachine
from solr_reindex.solr.client import SolrClient

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_SUPERSEDED = 3


def exit_code_for(state: JobState) -> int:
    """Completed and paused jobs end the unit successfully."""
    if state.status in (JobStatus.COMPLETED, JobStatus.PAUSED):
        return EXIT_OK
    return EXIT_JOB_FAILED


class ReindexWorker:
    """Execution unit bound to a single job id."""

    def __init__(
        self,
        job_id: UUID,
        execution_id: str,
        *,
        settings: Settings | None = None,
        registry: JobRegistry | None = None,
        stop_event: asyncio.Event | None = None,
    ):
        self.job_id = job_id
        self.execution_id = execution_id
        self.settings = settings or get_settings()

        # Clients
        self.registry = registry
        self._owns_registry = registry is None
        self.source: SolrClient | None = None
        self.target: SolrClient | None = None

        self.stop_event = stop_event or asyncio.Event()

    async def initialize(self) -> None:
        """Initialize worker resources."""
        logger.info(f"Initializing execution {self.execution_id} for job {self.job_id}...")

        if self.registry is None:
            from solr_reindex.reindex.factory import open_registry

            self.registry = await open_registry(self.settings)

        # Clusters named by the job win over the configured ones.
        spec = (await self.registry.get(self.job_id)).spec
        self.source = SolrClient.for_cluster(spec.source_cluster, self.settings)
        self.target = SolrClient.for_cluster(
            spec.effective_target_cluster, self.settings, target=True
        )
        logger.info(
            f"Copying {spec.source_collection} from {self.source.base_url} "
            f"to {spec.target_collection} on {self.target.base_url}"
        )

    async def cleanup(self) -> None:
        """Clean up worker resources."""
        if self.source:
            await self.source.aclose()
        if self.target:
            await self.target.aclose()
        if self._owns_registry:
            self.registry = None
        logger.info(f"Execution {self.execution_id} cleanup complete")

    def register_signal_handlers(self) -> None:
        """SIGTERM/SIGINT pause the job at the next batch boundary."""

        def signal_handler(signum: int, _frame: Any) -> None:
            logger.warning(f"Received signal {signum}, pausing after the current batch...")
            self.stop_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def run(self) -> int:
        """Run the job and return the unit's exit code."""
        try:
            await self.initialize()
            assert self.registry is not None and self.source is not None and self.target is not None

            machine = ReindexJobStateMachine(
                self.registry,
                BatchCopier(self.source, self.target),
                execution_id=self.execution_id,
                stop_event=self.stop_event,
            )
            state = await machine.run(self.job_id)
            logger.info(
                f"Execution {self.execution_id} finished: job {state.status.value}, "
                f"{state.docs_copied:,} documents copied, cursor {state.cursor}"
            )
            return exit_code_for(state)

        except OwnershipLostError as e:
            logger.warning(f"Execution {self.execution_id} stopped: {e}")
            return EXIT_SUPERSEDED
        except Exception as e:
            logger.error(f"Execution {self.execution_id} error: {e}", exc_info=True)
            raise
        finally:
            await self.cleanup()


def run_worker(job_id: str, execution_id: str) -> None:
    """Entry point for a worker process.

    Args:
        job_id: Job ID to process
        execution_id: Execution unit identifier assigned by the dispatcher
    """
    setup_logging()
    worker = ReindexWorker(UUID(job_id), execution_id)
    worker.register_signal_handlers()
    sys.exit(asyncio.run(worker.run()))


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one reindex job as an execution unit.")
    parser.add_argument("job_id", help="Job ID to process")
    parser.add_argument("execution_id", help="Execution unit identifier")
    args = parser.parse_args()
    run_worker(args.job_id, args.execution_id)


if __name__ == "__main__":
    main()
