"""Job-level metrics for the latest pipeline of a ref."""

import logging

from .emit import emit_status_metric, store_get_metric, store_set_metric
from .gitlab import GitLabClient
from .models import STATUSES, Job, Metric, MetricKind, Ref
from .store import Store

logger = logging.getLogger(__name__)


class JobsPuller:
    """Pulls the jobs of a ref's latest pipeline and emits their metrics."""

    def __init__(self, store: Store, gitlab: GitLabClient):
        self.store = store
        self.gitlab = gitlab

    async def pull_ref_pipeline_jobs_metrics(self, ref: Ref) -> None:
        """Process every job of the latest pipeline."""
        ref = await self.store.get_ref(ref.model_copy(deep=True))
        if not ref.latest_pipeline.id:
            return

        jobs = await self.gitlab.list_pipeline_jobs(ref.project.name, ref.latest_pipeline.id)
        for job in jobs:
            await self.process_job_metrics(ref, job)

    async def pull_ref_most_recent_jobs_metrics(self, ref: Ref) -> None:
        """Process only the jobs that changed since the last pull."""
        if not ref.project.pull.pipeline.jobs.enabled:
            return

        ref = await self.store.get_ref(ref.model_copy(deep=True))
        if not ref.latest_pipeline.id:
            return

        jobs = await self.gitlab.list_pipeline_jobs(ref.project.name, ref.latest_pipeline.id)
        for job in jobs:
            known = ref.latest_jobs.get(job.name)
            if known and known.id == job.id and known.status == job.status:
                continue
            await self.process_job_metrics(ref, job)

    async def process_job_metrics(self, ref: Ref, job: Job) -> None:
        """Snapshot ``job`` into ``ref`` and emit its metrics.

        ``ref`` is updated in place so consecutive jobs of one pull build on
        each other's snapshot.
        """
        former = ref.latest_jobs.get(job.name)
        ref.latest_jobs[job.name] = job
        await self.store.set_ref(ref)

        labels = {**ref.default_labels_values(), "stage": job.stage, "job_name": job.name}

        # Start at 0 like the pipeline run count
        run_count = await store_get_metric(
            self.store, Metric(kind=MetricKind.JOB_RUN_COUNT, labels=labels)
        )
        if former and former.id != job.id:
            run_count.value += 1
        await store_set_metric(self.store, run_count)

        await store_set_metric(
            self.store, Metric(kind=MetricKind.JOB_ID, labels=labels, value=job.id)
        )
        await emit_status_metric(
            self.store,
            MetricKind.JOB_STATUS,
            labels,
            STATUSES,
            job.status,
            ref.project.output_sparse_status_metrics,
        )
        await store_set_metric(
            self.store,
            Metric(kind=MetricKind.JOB_DURATION_SECONDS, labels=labels, value=job.duration_seconds),
        )
        await store_set_metric(
            self.store,
            Metric(
                kind=MetricKind.JOB_QUEUED_DURATION_SECONDS,
                labels=labels,
                value=job.queued_duration_seconds,
            ),
        )
        await store_set_metric(
            self.store,
            Metric(kind=MetricKind.JOB_TIMESTAMP, labels=labels, value=job.timestamp),
        )

        logger.debug(
            f"Processed job metrics project={ref.project.name} ref={ref.name} "
            f"job={job.name} id={job.id} status={job.status}"
        )
