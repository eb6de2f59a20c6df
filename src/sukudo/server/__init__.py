"""HTTP daemon: health, job submission, job status and live event feed."""

from sukudo.server.app import HealthStatus, create_app
from sukudo.server.lifecycle import DaemonLifecycle

__all__ = [
    "DaemonLifecycle",
    "HealthStatus",
    "create_app",
]
