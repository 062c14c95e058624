"""Pydantic models for refs, pipelines, test reports and metrics."""

import json
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# Every status a GitLab pipeline or job can report, in a stable order.
STATUSES = (
    "created",
    "waiting_for_resource",
    "preparing",
    "pending",
    "running",
    "success",
    "failed",
    "canceled",
    "skipped",
    "manual",
    "scheduled",
)

# GitLab spells it "canceled", older payloads and configs use "cancelled".
FINISHED_STATUSES = ("success", "failed", "skipped", "cancelled", "canceled")

TEST_CASE_STATUSES = ("success", "failed", "skipped", "error")


class RefKind(str, Enum):
    """What a tracked ref points at."""

    BRANCH = "branch"
    TAG = "tag"
    MERGE_REQUEST = "merge-request"


# --- Project pull settings ---


class VariablesPull(BaseModel):
    enabled: bool = False
    regexp: str = ".*"


class JobsPull(BaseModel):
    enabled: bool = False


class TestCasesPull(BaseModel):
    __test__ = False  # prevent pytest collection
    enabled: bool = False


class TestReportsPull(BaseModel):
    __test__ = False  # prevent pytest collection
    enabled: bool = False
    test_cases: TestCasesPull = TestCasesPull()


class PipelinePull(BaseModel):
    per_ref: int = Field(default=1, ge=1, le=100, description="Pipelines listed per pull")
    variables: VariablesPull = VariablesPull()
    jobs: JobsPull = JobsPull()
    test_reports: TestReportsPull = TestReportsPull()


class ProjectPull(BaseModel):
    pipeline: PipelinePull = PipelinePull()


class Project(BaseModel):
    """A GitLab project and how much of it gets pulled."""

    name: str
    topics: str = ""
    pull: ProjectPull = ProjectPull()
    output_sparse_status_metrics: bool = True


# --- Test reports ---


class TestCase(BaseModel):
    __test__ = False  # prevent pytest collection
    """Single test case as reported by GitLab."""
    name: str = ""
    classname: str = ""
    status: str = ""
    execution_time: float = 0.0

    # JUnit cases without the attribute come back as null
    @field_validator("name", "classname", "status", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        return "" if value is None else value

    @field_validator("execution_time", mode="before")
    @classmethod
    def _null_as_zero(cls, value):
        return 0.0 if value is None else value


class TestSuite(BaseModel):
    __test__ = False  # prevent pytest collection
    """Aggregated counts for one named suite."""
    name: str = ""
    total_time: float = 0.0
    total_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    test_cases: list[TestCase] = []

    @field_validator("name", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        return "" if value is None else value


class TestReport(BaseModel):
    __test__ = False  # prevent pytest collection
    """Pipeline-wide test report."""
    total_time: float = 0.0
    total_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    test_suites: list[TestSuite] = []


# --- Pipelines & jobs ---


def _unix(value: Optional[str]) -> float:
    if not value:
        return 0.0
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


class PipelineSummary(BaseModel):
    """Item of the project pipelines listing."""

    id: int
    ref: str = ""
    sha: str = ""
    status: str = ""
    source: str = ""


class Pipeline(BaseModel):
    """Full detail of a single pipeline run."""

    id: int = 0
    coverage: float = 0.0
    timestamp: float = 0.0
    duration_seconds: float = 0.0
    queued_duration_seconds: float = 0.0
    source: str = ""
    status: str = ""
    variables: str = ""
    test_report: TestReport = TestReport()

    @classmethod
    def from_api(cls, payload: dict) -> "Pipeline":
        """Convert a GitLab pipeline detail payload."""
        coverage = 0.0
        if payload.get("coverage"):
            try:
                coverage = float(payload["coverage"])
            except (TypeError, ValueError):
                coverage = 0.0

        return cls(
            id=payload["id"],
            coverage=coverage,
            timestamp=_unix(payload.get("created_at")),
            duration_seconds=float(payload.get("duration") or 0),
            queued_duration_seconds=float(payload.get("queued_duration") or 0),
            source=payload.get("source") or "",
            status=payload.get("status") or "",
        )


class Job(BaseModel):
    """A single job of a pipeline."""

    id: int = 0
    name: str = ""
    stage: str = ""
    status: str = ""
    duration_seconds: float = 0.0
    queued_duration_seconds: float = 0.0
    timestamp: float = 0.0

    @classmethod
    def from_api(cls, payload: dict) -> "Job":
        return cls(
            id=payload["id"],
            name=payload.get("name") or "",
            stage=payload.get("stage") or "",
            status=payload.get("status") or "",
            duration_seconds=float(payload.get("duration") or 0),
            queued_duration_seconds=float(payload.get("queued_duration") or 0),
            timestamp=_unix(payload.get("created_at")),
        )


# --- Refs ---


class Ref(BaseModel):
    """A branch, tag or merge request of a project, plus its last known state."""

    kind: RefKind = RefKind.BRANCH
    name: str
    project: Project
    latest_pipeline: Pipeline = Pipeline()
    latest_jobs: dict[str, Job] = {}

    @property
    def key(self) -> str:
        return f"{self.project.name}:{self.kind.value}:{self.name}"

    def default_labels_values(self, pipeline: Optional[Pipeline] = None) -> dict[str, str]:
        """Labels shared by every metric of this ref.

        When ``pipeline`` is given its source and variables are used instead
        of the ones of the latest known pipeline.
        """
        p = pipeline if pipeline is not None else self.latest_pipeline
        return {
            "project": self.project.name,
            "topics": self.project.topics,
            "ref": self.name,
            "kind": self.kind.value,
            "source": p.source,
            "variables": p.variables,
        }


# --- Metrics ---


class MetricKind(str, Enum):
    """Metric kinds, valued by their exposed name."""

    ID = "gitlab_ci_pipeline_id"
    RUN_COUNT = "gitlab_ci_pipeline_run_count"
    COVERAGE = "gitlab_ci_pipeline_coverage"
    STATUS = "gitlab_ci_pipeline_status"
    DURATION_SECONDS = "gitlab_ci_pipeline_duration_seconds"
    QUEUED_DURATION_SECONDS = "gitlab_ci_pipeline_queued_duration_seconds"
    TIMESTAMP = "gitlab_ci_pipeline_timestamp"

    TEST_REPORT_TOTAL_TIME = "gitlab_ci_pipeline_test_report_total_time"
    TEST_REPORT_TOTAL_COUNT = "gitlab_ci_pipeline_test_report_total_count"
    TEST_REPORT_SUCCESS_COUNT = "gitlab_ci_pipeline_test_report_success_count"
    TEST_REPORT_FAILED_COUNT = "gitlab_ci_pipeline_test_report_failed_count"
    TEST_REPORT_SKIPPED_COUNT = "gitlab_ci_pipeline_test_report_skipped_count"
    TEST_REPORT_ERROR_COUNT = "gitlab_ci_pipeline_test_report_error_count"

    TEST_SUITE_TOTAL_TIME = "gitlab_ci_pipeline_test_suite_total_time"
    TEST_SUITE_TOTAL_COUNT = "gitlab_ci_pipeline_test_suite_total_count"
    TEST_SUITE_SUCCESS_COUNT = "gitlab_ci_pipeline_test_suite_success_count"
    TEST_SUITE_FAILED_COUNT = "gitlab_ci_pipeline_test_suite_failed_count"
    TEST_SUITE_SKIPPED_COUNT = "gitlab_ci_pipeline_test_suite_skipped_count"
    TEST_SUITE_ERROR_COUNT = "gitlab_ci_pipeline_test_suite_error_count"

    TEST_CASE_EXECUTION_TIME = "gitlab_ci_pipeline_test_case_execution_time"
    TEST_CASE_STATUS = "gitlab_ci_pipeline_test_case_status"

    JOB_ID = "gitlab_ci_pipeline_job_id"
    JOB_RUN_COUNT = "gitlab_ci_pipeline_job_run_count"
    JOB_STATUS = "gitlab_ci_pipeline_job_status"
    JOB_DURATION_SECONDS = "gitlab_ci_pipeline_job_duration_seconds"
    JOB_QUEUED_DURATION_SECONDS = "gitlab_ci_pipeline_job_queued_duration_seconds"
    JOB_TIMESTAMP = "gitlab_ci_pipeline_job_timestamp"


class Metric(BaseModel):
    """A (kind, labels) keyed value. Last write wins."""

    kind: MetricKind
    labels: dict[str, str] = {}
    value: float = 0.0

    @property
    def key(self) -> str:
        return f"{self.kind.value}{json.dumps(self.labels, sort_keys=True)}"
