"""Error taxonomy for the deployment pipeline.

Provider adapters translate SDK errors into these types; everything above
``edgedeploy.providers`` only ever sees this hierarchy.

Fatal, never retried:
    DeployEnvironmentError, ConcurrentDeploymentError, NotFoundError
Retried with bounded backoff, then escalated:
    TransientProviderError -> PublishError / InvalidationError
Recorded, never fatal:
    ConsistencyWarning
"""

from __future__ import annotations


class EdgeDeployError(RuntimeError):
    """Base class for every error raised by edgedeploy."""


class DeployEnvironmentError(EdgeDeployError):
    """Bad credentials, unreachable object store or CDN distribution."""


class TransientProviderError(EdgeDeployError):
    """Throttling or a 5xx from the object store or CDN. Safe to retry."""


class PublishError(EdgeDeployError):
    """Uploading the build tree failed after retries were exhausted."""


class InvalidationError(EdgeDeployError):
    """Submitting a CDN invalidation failed after retries were exhausted."""


class ConcurrentDeploymentError(EdgeDeployError):
    """Another deployment holds the lease for this site."""


class LeaseOwnershipError(EdgeDeployError):
    """Release or renewal attempted with a lease id that no longer owns the lock."""


class NotFoundError(EdgeDeployError):
    """A version, invalidation or deployment id does not exist."""


class ObjectNotFoundError(NotFoundError):
    """An object key does not exist in the store."""


class PreconditionFailedError(EdgeDeployError):
    """A conditional write lost the race (ETag mismatch or key already present)."""


class IndexConflictError(EdgeDeployError):
    """An index read-modify-write kept conflicting with concurrent writers."""


class ArtifactIOError(EdgeDeployError):
    """The build tree is empty or cannot be read."""


class ArtifactIntegrityError(EdgeDeployError):
    """A stored blob's hash does not match its address."""


class BuildError(EdgeDeployError):
    """An external build, optimizer or check command exited non-zero."""


class DeploymentCancelledError(EdgeDeployError):
    """The cancellation token fired or a phase deadline elapsed."""


class InvalidTransitionError(EdgeDeployError):
    """Raised when a requested deployment state transition is not valid."""


class ConsistencyWarning(UserWarning):
    """Verification failed or an invalidation is still propagating.

    Recorded on the Deployment; never fails it.
    """
