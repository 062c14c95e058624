"""Configuration for the exporter.

Loads from YAML config file with environment variable overrides.
Pattern: EXPORTER__{SECTION}__{KEY} overrides nested YAML keys.
Example: EXPORTER__STORE__BACKEND=json
"""

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .models import Project, ProjectPull, Ref, RefKind


# --- GitLab ---


class GitLabConfig(BaseModel):
    url: str = "https://gitlab.com"
    token: str = ""  # from env: GITLAB_TOKEN
    timeout: float = Field(default=15.0, gt=0)


# --- Store ---


class StoreConfig(BaseModel):
    backend: Literal["memory", "json"] = "memory"
    path: str = "/data/exporter-state.json"


# --- Projects ---


class ProjectDefaults(BaseModel):
    pull: ProjectPull = ProjectPull()
    output_sparse_status_metrics: bool = True


class RefConfig(BaseModel):
    name: str
    kind: RefKind = RefKind.BRANCH


class ProjectConfig(BaseModel):
    name: str
    topics: str = ""
    refs: list[RefConfig] = []
    # Per-project overrides, project_defaults apply when unset
    pull: Optional[ProjectPull] = None
    output_sparse_status_metrics: Optional[bool] = None


# --- Exporter Config ---


class ExporterConfig(BaseModel):
    gitlab: GitLabConfig = GitLabConfig()
    store: StoreConfig = StoreConfig()
    project_defaults: ProjectDefaults = ProjectDefaults()
    projects: list[ProjectConfig] = []

    def build_refs(self) -> list[Ref]:
        """Resolve the configured projects into refs to pull."""
        refs = []
        for p in self.projects:
            project = Project(
                name=p.name,
                topics=p.topics,
                pull=p.pull or self.project_defaults.pull,
                output_sparse_status_metrics=(
                    p.output_sparse_status_metrics
                    if p.output_sparse_status_metrics is not None
                    else self.project_defaults.output_sparse_status_metrics
                ),
            )
            for r in p.refs:
                refs.append(Ref(kind=r.kind, name=r.name, project=project))
        return refs


def _apply_env_overrides(config_dict: dict, prefix: str = "EXPORTER") -> dict:
    """Apply environment variable overrides to config dict.

    Pattern: EXPORTER__SECTION__KEY=value maps to config[section][key] = value
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}__"):
            continue
        parts = key[len(prefix) + 2 :].lower().split("__")
        target = config_dict
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        # Type coercion for common cases
        if value.lower() in ("true", "false"):
            value = value.lower() == "true"
        elif value.isdigit():
            value = int(value)
        target[parts[-1]] = value
    return config_dict


def load_config(
    config_path: Optional[str] = None,
) -> ExporterConfig:
    """Load configuration from YAML file with env overrides.

    Priority: env vars > YAML file > defaults
    """
    config_dict = {}

    # 1. Load YAML if exists
    if config_path is None:
        config_path = os.getenv("EXPORTER_CONFIG", "config/exporter.yml")
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            config_dict = yaml.safe_load(f) or {}

    # 2. Apply env overrides
    config_dict = _apply_env_overrides(config_dict)

    # 3. GitLab token from dedicated env var
    if "gitlab" not in config_dict:
        config_dict["gitlab"] = {}
    if not config_dict["gitlab"].get("token"):
        config_dict["gitlab"]["token"] = os.getenv("GITLAB_TOKEN", "")

    return ExporterConfig(**config_dict)


# Singleton for the service
_config: Optional[ExporterConfig] = None


def get_config() -> ExporterConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config
