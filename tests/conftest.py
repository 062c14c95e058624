"""
Pipeline Exporter Test Configuration

Shared fixtures for all tests.
"""
import pytest
from unittest.mock import AsyncMock

from pipeline_exporter.controller import Controller
from pipeline_exporter.gitlab import GitLabClient
from pipeline_exporter.jobs import JobsPuller
from pipeline_exporter.models import (
    Pipeline,
    PipelineSummary,
    Project,
    ProjectPull,
    Ref,
    RefKind,
)
from pipeline_exporter.store import MemoryStore


# =============================================================================
# FIXTURES: Sample Data
# =============================================================================

@pytest.fixture
def project() -> Project:
    """Project with dense status metrics and every optional pull disabled."""
    return Project(name="g1", output_sparse_status_metrics=False, pull=ProjectPull())


@pytest.fixture
def ref(project) -> Ref:
    return Ref(kind=RefKind.BRANCH, name="main", project=project)


@pytest.fixture
def pipelines() -> dict[int, Pipeline]:
    """Pipelines GitLab knows about, by ID. Tests add to it freely."""
    return {
        42: Pipeline(id=42, status="running", source="push", coverage=87.5,
                     duration_seconds=120, queued_duration_seconds=3, timestamp=1700000000),
        43: Pipeline(id=43, status="success", source="push", coverage=90.0,
                     duration_seconds=100, queued_duration_seconds=2, timestamp=1700000600),
        44: Pipeline(id=44, status="failed", source="push", coverage=80.0,
                     duration_seconds=90, queued_duration_seconds=1, timestamp=1700001200),
    }


@pytest.fixture
def summaries():
    """Build a listing as GitLab returns it: pass IDs newest first."""
    def _summaries(*ids: int) -> list[PipelineSummary]:
        return [PipelineSummary(id=i, ref="main") for i in ids]
    return _summaries


# =============================================================================
# FIXTURES: Collaborators
# =============================================================================

@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def gitlab(pipelines) -> AsyncMock:
    """GitLab client mock serving ``pipelines``."""
    client = AsyncMock(spec=GitLabClient)
    client.list_project_pipelines.return_value = []

    async def get_pipeline(project, pipeline_id):
        return pipelines[pipeline_id].model_copy(deep=True)

    client.get_pipeline.side_effect = get_pipeline
    return client


@pytest.fixture
def jobs() -> AsyncMock:
    return AsyncMock(spec=JobsPuller)


@pytest.fixture
def controller(store, gitlab, jobs) -> Controller:
    return Controller(store, gitlab, jobs)
