"""Tests for refs, pipelines, test reports and metric keys."""

from datetime import datetime, timezone

import pytest

from pipeline_exporter.models import (
    Job,
    Metric,
    MetricKind,
    Pipeline,
    Project,
    Ref,
    RefKind,
    TestReport,
)


GITLAB_PIPELINE = {
    "id": 1001,
    "iid": 12,
    "status": "success",
    "source": "merge_request_event",
    "ref": "main",
    "coverage": "87.50",
    "duration": 125,
    "queued_duration": 3.2,
    "created_at": "2026-01-15T10:00:00.000Z",
    "updated_at": "2026-01-15T10:02:05.000Z",
}

GITLAB_TEST_REPORT = {
    "total_time": 5.25,
    "total_count": 3,
    "success_count": 2,
    "failed_count": 1,
    "skipped_count": 0,
    "error_count": 0,
    "test_suites": [{
        "name": "rspec",
        "total_time": 5.25,
        "total_count": 3,
        "success_count": 2,
        "failed_count": 1,
        "skipped_count": 0,
        "error_count": 0,
        "suite_error": None,
        "test_cases": [{
            "status": "failed",
            "name": "Checkout rejects empty cart",
            "classname": "spec.checkout",
            "execution_time": 1.5,
            "system_output": "expected true, got false",
            "stack_trace": None,
        }],
    }],
}


class TestPipelineFromApi:

    def test_converts_payload(self):
        p = Pipeline.from_api(GITLAB_PIPELINE)

        assert p.id == 1001
        assert p.status == "success"
        assert p.source == "merge_request_event"
        assert p.coverage == pytest.approx(87.5)
        assert p.duration_seconds == 125
        assert p.queued_duration_seconds == pytest.approx(3.2)
        assert p.timestamp == datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc).timestamp()

    def test_missing_optional_fields(self):
        p = Pipeline.from_api({"id": 1, "status": "running", "coverage": None, "duration": None})

        assert p.coverage == 0.0
        assert p.duration_seconds == 0.0
        assert p.timestamp == 0.0

    def test_timestamp_is_creation_time(self):
        p = Pipeline.from_api({
            "id": 1,
            "created_at": "2024-01-01T00:00:00Z",
            "updated_at": "2024-01-02T00:00:00Z",
        })

        assert p.timestamp == 1704067200.0

    def test_unparsable_coverage(self):
        assert Pipeline.from_api({"id": 1, "coverage": "n/a"}).coverage == 0.0


class TestJobFromApi:

    def test_converts_payload(self):
        job = Job.from_api({
            "id": 7, "name": "test:unit", "stage": "test", "status": "failed",
            "duration": 42.5, "queued_duration": None,
            "created_at": "2026-01-15T10:00:00Z",
        })

        assert job.name == "test:unit"
        assert job.stage == "test"
        assert job.duration_seconds == 42.5
        assert job.queued_duration_seconds == 0.0
        assert job.timestamp > 0


class TestTestReport:

    def test_parses_gitlab_payload(self):
        report = TestReport.model_validate(GITLAB_TEST_REPORT)

        assert report.total_count == 3
        assert report.test_suites[0].name == "rspec"
        case = report.test_suites[0].test_cases[0]
        assert case.status == "failed"
        assert case.classname == "spec.checkout"
        assert case.execution_time == 1.5


class TestRef:

    def test_default_labels(self):
        ref = Ref(
            kind=RefKind.TAG, name="v1.0.0",
            project=Project(name="group/app", topics="python"),
            latest_pipeline=Pipeline(id=1, source="push", variables="A:1"),
        )

        assert ref.default_labels_values() == {
            "project": "group/app",
            "topics": "python",
            "ref": "v1.0.0",
            "kind": "tag",
            "source": "push",
            "variables": "A:1",
        }

    def test_labels_for_given_pipeline(self):
        ref = Ref(name="main", project=Project(name="g1"),
                  latest_pipeline=Pipeline(id=1, source="push"))

        labels = ref.default_labels_values(Pipeline(id=2, source="schedule", variables="B:2"))

        assert labels["source"] == "schedule"
        assert labels["variables"] == "B:2"

    def test_key_depends_on_kind(self):
        project = Project(name="g1")
        branch = Ref(kind=RefKind.BRANCH, name="1", project=project)
        mr = Ref(kind=RefKind.MERGE_REQUEST, name="1", project=project)
        assert branch.key != mr.key

    def test_never_reconciled_by_default(self):
        assert Ref(name="main", project=Project(name="g1")).latest_pipeline.id == 0

    def test_defaults_not_shared(self):
        a = Ref(name="a", project=Project(name="g1"))
        b = Ref(name="b", project=Project(name="g1"))
        a.latest_jobs["build"] = Job(id=1)
        assert b.latest_jobs == {}


class TestMetricKey:

    def test_same_entity_same_key(self):
        a = Metric(kind=MetricKind.ID, labels={"project": "g1", "ref": "main"}, value=1)
        b = Metric(kind=MetricKind.ID, labels={"ref": "main", "project": "g1"}, value=2)
        assert a.key == b.key

    def test_kind_is_part_of_key(self):
        labels = {"project": "g1"}
        assert Metric(kind=MetricKind.ID, labels=labels).key != Metric(
            kind=MetricKind.RUN_COUNT, labels=labels
        ).key
