"""Terminal rendering for deployments, versions, invalidations and the lease."""

from edgedeploy.monitor.renderer import DeployRenderer

__all__ = ["DeployRenderer"]
