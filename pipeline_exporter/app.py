"""Pipeline Exporter — FastAPI application.

Exposes the metrics held in the store in Prometheus text format and
lets an external scheduler trigger a pull for a configured ref.
"""

import logging
import os
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from .config import get_config
from .controller import Controller
from .gitlab import GitLabClient, GitLabError
from .jobs import JobsPuller
from .models import Metric
from .store import create_store

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire store, client and controller on startup."""
    config = get_config()
    store = create_store(config.store)
    gitlab = GitLabClient(config.gitlab)

    app.state.store = store
    app.state.gitlab = gitlab
    app.state.controller = Controller(store, gitlab, JobsPuller(store, gitlab))
    app.state.refs = {(r.project.name, r.name): r for r in config.build_refs()}

    logger.info(f"Pipeline Exporter v{app.version} started")
    logger.info(f"Storage backend: {store.__class__.__name__}, {len(app.state.refs)} refs configured")
    yield
    logger.info("Shutting down")


app = FastAPI(
    title="Pipeline Exporter",
    description="GitLab CI pipeline metrics, reconciled per ref",
    version="0.1.0",
    lifespan=lifespan,
)


class PullRequest(BaseModel):
    project: str
    ref: str


class PullResponse(BaseModel):
    status: str = "ok"
    project: str
    ref: str


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def render_metrics(metrics: list[Metric]) -> str:
    """Render metrics in the Prometheus text exposition format."""
    by_kind: dict[str, list[Metric]] = defaultdict(list)
    for m in metrics:
        by_kind[m.kind.value].append(m)

    lines = []
    for name in sorted(by_kind):
        lines.append(f"# TYPE {name} gauge")
        for m in sorted(by_kind[name], key=lambda m: sorted(m.labels.items())):
            labels = ",".join(f'{k}="{_escape(v)}"' for k, v in sorted(m.labels.items()))
            value = float(m.value)
            value = int(value) if value.is_integer() else value
            series = f"{name}{{{labels}}}" if labels else name
            lines.append(f"{series} {value}")
    lines.append("")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Health Check
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    gitlab_ok = await app.state.gitlab.health_check()
    return {
        "status": "healthy" if gitlab_ok else "degraded",
        "service": "pipeline-exporter",
        "version": app.version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "storage": app.state.store.__class__.__name__,
        "refs": len(app.state.refs),
        "gitlab": "ok" if gitlab_ok else "unreachable",
    }


# ---------------------------------------------------------------------------
# Prometheus Metrics
# ---------------------------------------------------------------------------

@app.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics():
    try:
        return render_metrics(await app.state.store.metrics())
    except Exception as e:
        logger.error(f"Metrics failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


# ---------------------------------------------------------------------------
# Pull trigger
# ---------------------------------------------------------------------------

@app.post("/refs/pull", response_model=PullResponse)
async def pull_ref(request: PullRequest):
    """Pull the pipelines of one configured ref now."""
    ref = app.state.refs.get((request.project, request.ref))
    if ref is None:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown ref {request.project}@{request.ref}",
        )

    try:
        await app.state.controller.pull_ref_metrics(ref)
    except GitLabError as e:
        logger.error(f"Pull failed for {request.project}@{request.ref}: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return PullResponse(project=request.project, ref=request.ref)
