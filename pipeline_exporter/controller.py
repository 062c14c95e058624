"""Pipeline reconciliation — turns a ref's pipeline history into metrics.

Handles:
- Refreshing the ref from the store before touching it
- Oldest-to-newest processing of the latest pipelines of a ref
- Change detection against the stored pipeline ID metric
- Run counting, pipeline metrics and status expansion
- Conditional job pulls and test report / suite / case expansion
- Error isolation (one failing pipeline doesn't block the others)

Refs are treated as values: every entry point works on its own deep copy
and only the store carries state between calls.
"""

import logging
from typing import Optional, Protocol

from .emit import emit_status_metric, store_get_metric, store_set_metric
from .gitlab import GitLabClient, GitLabError
from .jobs import JobsPuller
from .models import (
    FINISHED_STATUSES,
    STATUSES,
    TEST_CASE_STATUSES,
    Metric,
    MetricKind,
    PipelineSummary,
    Ref,
    RefKind,
    TestCase,
    TestReport,
    TestSuite,
)
from .store import Store

logger = logging.getLogger(__name__)


class JobsCollaborator(Protocol):
    async def pull_ref_pipeline_jobs_metrics(self, ref: Ref) -> None:
        ...

    async def pull_ref_most_recent_jobs_metrics(self, ref: Ref) -> None:
        ...


def _log_fields(ref: Ref, **extra) -> str:
    fields = {
        "project": ref.project.name,
        "ref": ref.name,
        "ref-kind": ref.kind.value,
        **extra,
    }
    return " ".join(f"{k}={v}" for k, v in fields.items())


class Controller:
    """Reconciles refs against GitLab and writes their metrics to the store."""

    def __init__(
        self,
        store: Store,
        gitlab: GitLabClient,
        jobs: Optional[JobsCollaborator] = None,
    ):
        self.store = store
        self.gitlab = gitlab
        self.jobs = jobs or JobsPuller(store, gitlab)

    async def pull_ref_metrics(self, ref: Ref) -> None:
        """Pull the latest pipelines of ``ref`` and emit their metrics.

        Raises on store failures while refreshing the ref and on a failed
        pipeline listing. Failures of individual pipelines are logged only.
        """
        # The scheduled copy may lag behind the store under concurrent pulls
        ref = await self.store.get_ref(ref.model_copy(deep=True))

        if ref.kind == RefKind.MERGE_REQUEST:
            ref_name = f"refs/merge-requests/{ref.name}/head"
        else:
            ref_name = ref.name

        try:
            pipelines = await self.gitlab.list_project_pipelines(
                ref.project.name, ref_name, ref.project.pull.pipeline.per_ref
            )
        except GitLabError as e:
            raise GitLabError(
                f"error fetching project pipelines for {ref.project.name}: {e}"
            ) from e

        if not pipelines:
            logger.debug(f"Could not find any pipeline for the ref {_log_fields(ref)}")
            return

        # GitLab lists newest first, process in the order they ran
        for summary in reversed(pipelines):
            try:
                await self.process_pipelines_metrics(ref, summary)
            except Exception as e:
                logger.error(
                    f"Processing pipeline metrics failed "
                    f"{_log_fields(ref, pipeline=summary.id)}: {e}"
                )

    async def process_pipelines_metrics(self, ref: Ref, summary: PipelineSummary) -> None:
        ref = ref.model_copy(deep=True)
        pull = ref.project.pull.pipeline

        pipeline = await self.gitlab.get_pipeline(ref.project.name, summary.id)

        # Variables never change for a given pipeline, fetch them once
        if pull.variables.enabled:
            try:
                cached = await self.store.pipeline_variables_exist(pipeline)
            except Exception as e:
                logger.error(
                    f"Checking pipeline variables in the store failed "
                    f"{_log_fields(ref, pipeline=pipeline.id)}: {e}"
                )
                cached = False

            if not cached:
                try:
                    variables = await self.gitlab.get_pipeline_variables(
                        ref.project.name, pipeline, pull.variables.regexp
                    )
                except GitLabError:
                    await self.store.set_pipeline_variables(pipeline, "")
                    raise
                await self.store.set_pipeline_variables(pipeline, variables)
                pipeline.variables = variables
            else:
                pipeline.variables = await self.store.get_pipeline_variables(pipeline)

        id_metric = await store_get_metric(
            self.store,
            Metric(
                kind=MetricKind.ID,
                labels=ref.default_labels_values(pipeline),
                value=pipeline.id,
            ),
        )

        # Only the ID is compared: a status change on an already known
        # pipeline does not go through the full re-emit below. With per_ref > 1
        # older pipelines are listed again on every pull; without the
        # ordering check they would flip latest_pipeline back and bump the
        # run count each time.
        if ref.latest_pipeline.id == 0 or (
            id_metric.value != pipeline.id and pipeline.id > ref.latest_pipeline.id
        ):
            former = ref.latest_pipeline
            ref.latest_pipeline = pipeline
            await self.store.set_ref(ref)

            labels = ref.default_labels_values()

            # Start at 0 when unknown, a restart must not look like a new run
            run_count = await store_get_metric(
                self.store, Metric(kind=MetricKind.RUN_COUNT, labels=labels)
            )
            if former.id != 0 and former.id != ref.latest_pipeline.id:
                run_count.value += 1
            await store_set_metric(self.store, run_count)

            await store_set_metric(
                self.store,
                Metric(kind=MetricKind.COVERAGE, labels=labels, value=pipeline.coverage),
            )
            await store_set_metric(
                self.store,
                Metric(kind=MetricKind.ID, labels=labels, value=pipeline.id),
            )
            await emit_status_metric(
                self.store,
                MetricKind.STATUS,
                labels,
                STATUSES,
                pipeline.status,
                ref.project.output_sparse_status_metrics,
            )
            await store_set_metric(
                self.store,
                Metric(
                    kind=MetricKind.DURATION_SECONDS,
                    labels=labels,
                    value=pipeline.duration_seconds,
                ),
            )
            await store_set_metric(
                self.store,
                Metric(
                    kind=MetricKind.QUEUED_DURATION_SECONDS,
                    labels=labels,
                    value=pipeline.queued_duration_seconds,
                ),
            )
            await store_set_metric(
                self.store,
                Metric(kind=MetricKind.TIMESTAMP, labels=labels, value=pipeline.timestamp),
            )

            if pull.jobs.enabled:
                await self.jobs.pull_ref_pipeline_jobs_metrics(ref)
        else:
            await self.jobs.pull_ref_most_recent_jobs_metrics(ref)

        if pull.test_reports.enabled and ref.latest_pipeline.status in FINISHED_STATUSES:
            report = await self.gitlab.get_pipeline_test_report(
                ref.project.name, ref.latest_pipeline.id
            )
            ref.latest_pipeline.test_report = report

            await self.process_test_report_metrics(ref, report)
            for suite in report.test_suites:
                await self.process_test_suite_metrics(ref, suite)
                if pull.test_reports.test_cases.enabled:
                    for case in suite.test_cases:
                        await self.process_test_case_metrics(ref, suite, case)

    async def _refresh_ref(self, ref: Ref, fields: str) -> Optional[Ref]:
        try:
            return await self.store.get_ref(ref.model_copy(deep=True))
        except Exception as e:
            logger.error(f"Getting ref from the store failed {fields}: {e}")
            return None

    async def process_test_report_metrics(self, ref: Ref, report: TestReport) -> None:
        fields = _log_fields(ref)
        labels = ref.default_labels_values()

        if await self._refresh_ref(ref, fields) is None:
            return

        logger.debug(f"Processing test report metrics {fields}")

        for kind, value in (
            (MetricKind.TEST_REPORT_ERROR_COUNT, report.error_count),
            (MetricKind.TEST_REPORT_FAILED_COUNT, report.failed_count),
            (MetricKind.TEST_REPORT_SKIPPED_COUNT, report.skipped_count),
            (MetricKind.TEST_REPORT_SUCCESS_COUNT, report.success_count),
            (MetricKind.TEST_REPORT_TOTAL_COUNT, report.total_count),
            (MetricKind.TEST_REPORT_TOTAL_TIME, report.total_time),
        ):
            await store_set_metric(self.store, Metric(kind=kind, labels=labels, value=value))

    async def process_test_suite_metrics(self, ref: Ref, suite: TestSuite) -> None:
        fields = _log_fields(ref, **{"test-suite-name": suite.name})
        labels = {**ref.default_labels_values(), "test_suite_name": suite.name}

        if await self._refresh_ref(ref, fields) is None:
            return

        logger.debug(f"Processing test suite metrics {fields}")

        for kind, value in (
            (MetricKind.TEST_SUITE_ERROR_COUNT, suite.error_count),
            (MetricKind.TEST_SUITE_FAILED_COUNT, suite.failed_count),
            (MetricKind.TEST_SUITE_SKIPPED_COUNT, suite.skipped_count),
            (MetricKind.TEST_SUITE_SUCCESS_COUNT, suite.success_count),
            (MetricKind.TEST_SUITE_TOTAL_COUNT, suite.total_count),
            (MetricKind.TEST_SUITE_TOTAL_TIME, suite.total_time),
        ):
            await store_set_metric(self.store, Metric(kind=kind, labels=labels, value=value))

    async def process_test_case_metrics(
        self, ref: Ref, suite: TestSuite, case: TestCase
    ) -> None:
        fields = _log_fields(
            ref,
            **{
                "test-suite-name": suite.name,
                "test-case-name": case.name,
                "test-case-status": case.status,
            },
        )
        labels = {
            **ref.default_labels_values(),
            "test_suite_name": suite.name,
            "test_case_name": case.name,
            "test_case_classname": case.classname,
        }

        refreshed = await self._refresh_ref(ref, fields)
        if refreshed is None:
            return

        logger.debug(f"Processing test case metrics {fields}")

        await store_set_metric(
            self.store,
            Metric(
                kind=MetricKind.TEST_CASE_EXECUTION_TIME,
                labels=labels,
                value=case.execution_time,
            ),
        )
        await emit_status_metric(
            self.store,
            MetricKind.TEST_CASE_STATUS,
            labels,
            TEST_CASE_STATUSES,
            case.status,
            refreshed.project.output_sparse_status_metrics,
        )
