"""State store for refs, metrics and cached pipeline variables.

Supports an in-memory store (default) and a JSON file store that keeps
state across restarts.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from .config import StoreConfig
from .models import Metric, Pipeline, Ref

logger = logging.getLogger(__name__)


class Store(Protocol):
    """Storage backend protocol."""

    async def get_ref(self, ref: Ref) -> Ref:
        """Return the stored copy of ``ref``, or ``ref`` itself if unknown."""
        ...

    async def set_ref(self, ref: Ref) -> None:
        ...

    async def get_metric(self, metric: Metric) -> Metric:
        """Return the stored copy of ``metric``, or ``metric`` itself if unknown."""
        ...

    async def set_metric(self, metric: Metric) -> None:
        ...

    async def del_metric(self, metric: Metric) -> None:
        ...

    async def metric_exists(self, metric: Metric) -> bool:
        ...

    async def metrics(self) -> list[Metric]:
        ...

    async def pipeline_variables_exist(self, pipeline: Pipeline) -> bool:
        ...

    async def get_pipeline_variables(self, pipeline: Pipeline) -> str:
        ...

    async def set_pipeline_variables(self, pipeline: Pipeline, variables: str) -> None:
        ...


class MemoryStore:
    """Process-local store. Reads and writes hand out copies, never aliases."""

    def __init__(self):
        self._refs: dict[str, Ref] = {}
        self._metrics: dict[str, Metric] = {}
        self._variables: dict[int, str] = {}

    async def get_ref(self, ref: Ref) -> Ref:
        stored = self._refs.get(ref.key)
        return stored.model_copy(deep=True) if stored else ref

    async def set_ref(self, ref: Ref) -> None:
        self._refs[ref.key] = ref.model_copy(deep=True)

    async def get_metric(self, metric: Metric) -> Metric:
        stored = self._metrics.get(metric.key)
        return stored.model_copy(deep=True) if stored else metric

    async def set_metric(self, metric: Metric) -> None:
        self._metrics[metric.key] = metric.model_copy(deep=True)

    async def del_metric(self, metric: Metric) -> None:
        self._metrics.pop(metric.key, None)

    async def metric_exists(self, metric: Metric) -> bool:
        return metric.key in self._metrics

    async def metrics(self) -> list[Metric]:
        return [m.model_copy(deep=True) for m in self._metrics.values()]

    async def pipeline_variables_exist(self, pipeline: Pipeline) -> bool:
        return pipeline.id in self._variables

    async def get_pipeline_variables(self, pipeline: Pipeline) -> str:
        return self._variables.get(pipeline.id, "")

    async def set_pipeline_variables(self, pipeline: Pipeline, variables: str) -> None:
        self._variables[pipeline.id] = variables


class JSONFileStore:
    """JSON file store for single-instance deployments.

    Every write rewrites the whole file. Good for a handful of projects
    and when state has to survive a restart.
    """

    def __init__(self, path: str = "/data/exporter-state.json"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._data = self._load()

    def _load(self) -> dict:
        if self.path.exists():
            try:
                return json.loads(self.path.read_text())
            except (json.JSONDecodeError, OSError):
                logger.warning(f"Corrupted state file {self.path}, starting fresh")
        return {"refs": {}, "metrics": {}, "variables": {}}

    def _save(self):
        self.path.write_text(json.dumps(self._data, indent=2))

    async def get_ref(self, ref: Ref) -> Ref:
        stored = self._data["refs"].get(ref.key)
        return Ref.model_validate(stored) if stored else ref

    async def set_ref(self, ref: Ref) -> None:
        self._data["refs"][ref.key] = ref.model_dump(mode="json")
        self._save()

    async def get_metric(self, metric: Metric) -> Metric:
        stored = self._data["metrics"].get(metric.key)
        return Metric.model_validate(stored) if stored else metric

    async def set_metric(self, metric: Metric) -> None:
        self._data["metrics"][metric.key] = metric.model_dump(mode="json")
        self._save()

    async def del_metric(self, metric: Metric) -> None:
        if self._data["metrics"].pop(metric.key, None) is not None:
            self._save()

    async def metric_exists(self, metric: Metric) -> bool:
        return metric.key in self._data["metrics"]

    async def metrics(self) -> list[Metric]:
        return [Metric.model_validate(m) for m in self._data["metrics"].values()]

    async def pipeline_variables_exist(self, pipeline: Pipeline) -> bool:
        return str(pipeline.id) in self._data["variables"]

    async def get_pipeline_variables(self, pipeline: Pipeline) -> str:
        return self._data["variables"].get(str(pipeline.id), "")

    async def set_pipeline_variables(self, pipeline: Pipeline, variables: str) -> None:
        self._data["variables"][str(pipeline.id)] = variables
        self._save()


def create_store(config: Optional[StoreConfig] = None) -> Store:
    """Factory: creates the configured storage backend."""
    config = config or StoreConfig()

    if config.backend == "json":
        logger.info(f"Using JSON file store: {config.path}")
        return JSONFileStore(path=config.path)

    logger.info("Using in-memory store, state will NOT survive restarts")
    return MemoryStore()
