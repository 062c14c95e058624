"""GitLab API client for pipelines, variables, test reports and jobs.

Handles:
- Single-page pipeline listing per ref
- Pipeline detail and test report fetching
- Pipeline variables, flattened into a label-friendly string
- Job listing (paginated)

No retries: a failed call surfaces as GitLabError and the caller decides.
"""

import logging
import re
from typing import Optional
from urllib.parse import quote

import httpx

from .config import GitLabConfig
from .models import Job, Pipeline, PipelineSummary, TestReport

logger = logging.getLogger(__name__)


class GitLabError(Exception):
    """A GitLab API call failed."""


class GitLabClient:
    """Async GitLab REST API client."""

    def __init__(
        self,
        config: GitLabConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.headers = {"PRIVATE-TOKEN": config.token} if config.token else {}
        self.base = f"{config.url.rstrip('/')}/api/v4"
        self._transport = transport

    def _project_url(self, project: str) -> str:
        return f"{self.base}/projects/{quote(project, safe='')}"

    async def _get(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                headers=self.headers,
                timeout=self.config.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                return resp
        except httpx.HTTPStatusError as e:
            raise GitLabError(
                f"GET {url} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise GitLabError(f"GET {url} failed: {e}") from e

    # --- Pipelines ---

    async def list_project_pipelines(
        self, project: str, ref: str, per_page: int
    ) -> list[PipelineSummary]:
        """List the most recent pipelines of a ref, newest first. First page only."""
        resp = await self._get(
            f"{self._project_url(project)}/pipelines",
            params={"ref": ref, "per_page": per_page, "page": 1},
        )
        pipelines = [PipelineSummary.model_validate(p) for p in resp.json()]
        logger.debug(f"Listed {len(pipelines)} pipelines for {project}@{ref}")
        return pipelines

    async def get_pipeline(self, project: str, pipeline_id: int) -> Pipeline:
        resp = await self._get(f"{self._project_url(project)}/pipelines/{pipeline_id}")
        return Pipeline.from_api(resp.json())

    async def get_pipeline_variables(
        self, project: str, pipeline: Pipeline, regexp: str = ".*"
    ) -> str:
        """Return ``key:value`` pairs joined by ``,`` for keys matching ``regexp``."""
        try:
            pattern = re.compile(regexp)
        except re.error as e:
            raise GitLabError(f"Invalid variables regexp {regexp!r}: {e}") from e

        resp = await self._get(
            f"{self._project_url(project)}/pipelines/{pipeline.id}/variables"
        )
        return ",".join(
            f"{v['key']}:{v['value']}"
            for v in resp.json()
            if pattern.match(v["key"])
        )

    async def get_pipeline_test_report(self, project: str, pipeline_id: int) -> TestReport:
        resp = await self._get(
            f"{self._project_url(project)}/pipelines/{pipeline_id}/test_report"
        )
        return TestReport.model_validate(resp.json())

    # --- Jobs ---

    async def list_pipeline_jobs(self, project: str, pipeline_id: int) -> list[Job]:
        """List every job of a pipeline, following pagination."""
        jobs: list[Job] = []
        page = "1"
        while page:
            resp = await self._get(
                f"{self._project_url(project)}/pipelines/{pipeline_id}/jobs",
                params={"per_page": 100, "page": page},
            )
            jobs.extend(Job.from_api(j) for j in resp.json())
            page = resp.headers.get("x-next-page", "")
        return jobs

    async def health_check(self) -> bool:
        try:
            await self._get(f"{self.base}/version")
            return True
        except GitLabError:
            return False
