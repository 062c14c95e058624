"""GitLab CI pipeline metrics exporter."""

__version__ = "0.1.0"
