"""Pre-flight, external command and post-deploy verification steps."""

from edgedeploy.checks.commands import CommandResult, run_command
from edgedeploy.checks.preflight import check_environment, validate_config
from edgedeploy.checks.verify import ProbeResult, probe_root_document

__all__ = [
    "CommandResult",
    "ProbeResult",
    "check_environment",
    "probe_root_document",
    "run_command",
    "validate_config",
]
