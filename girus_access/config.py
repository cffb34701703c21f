"""
Configuration for girus-access components.

A single SupervisorConfig object is built once (from defaults, environment
variables and CLI flags) and passed explicitly to the health checker, the
readiness poller and the access supervisor.

Environment variables:
    - GIRUS_NAMESPACE: namespace of the lab workloads (default: girus)
    - GIRUS_STATE_DIR: directory for PID records (default: ~/.girus)
    - GIRUS_KUBECTL: kubectl executable (default: kubectl)
    - GIRUS_KUBE_CONTEXT: kubeconfig context to use (default: current)
    - GIRUS_BIND_ADDRESS: local address forwarders listen on (default: 127.0.0.1)
    - GIRUS_READINESS_TIMEOUT: readiness budget in seconds (default: 300)
    - GIRUS_POLL_INTERVAL: delay between readiness iterations (default: 0.5)
    - GIRUS_PROBE_TIMEOUT: timeout of a single HTTP probe (default: 2)
"""
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from girus_access import constants


def _default_state_dir() -> Path:
    return Path.home() / constants.STATE_DIR_NAME


@dataclass(frozen=True)
class SupervisorConfig:
    """Settings shared by the poller, the health checker and the supervisor."""

    namespace: str = constants.DEFAULT_NAMESPACE
    state_dir: Path = field(default_factory=_default_state_dir)
    kubectl: str = "kubectl"
    kube_context: Optional[str] = None
    bind_address: str = "127.0.0.1"

    readiness_timeout: float = constants.READINESS_TIMEOUT
    poll_interval: float = constants.POLL_INTERVAL
    api_timeout: float = constants.API_TIMEOUT
    probe_timeout: float = constants.PROBE_TIMEOUT
    terminate_timeout: float = constants.TERMINATE_TIMEOUT

    # Application-level health probe target
    health_service: str = constants.BACKEND_SERVICE
    health_port: int = constants.BACKEND_PORT
    health_path: str = constants.HEALTH_PATH

    acceptable_statuses: tuple[int, ...] = constants.ACCEPTABLE_STATUS_CODES

    @property
    def log_dir(self) -> Path:
        return self.state_dir / "logs"

    @classmethod
    def from_env(cls, environ=None, **overrides):
        """
        Build a configuration from GIRUS_* environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)
            **overrides: Explicit values (e.g. from CLI flags); None values are ignored

        Returns:
            SupervisorConfig: Resolved configuration

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        environ = os.environ if environ is None else environ
        values = {}

        string_vars = {
            "GIRUS_NAMESPACE": "namespace",
            "GIRUS_KUBECTL": "kubectl",
            "GIRUS_KUBE_CONTEXT": "kube_context",
            "GIRUS_BIND_ADDRESS": "bind_address",
        }
        for var, attr in string_vars.items():
            if environ.get(var):
                values[attr] = environ[var]

        if environ.get("GIRUS_STATE_DIR"):
            values["state_dir"] = Path(environ["GIRUS_STATE_DIR"]).expanduser()

        float_vars = {
            "GIRUS_READINESS_TIMEOUT": "readiness_timeout",
            "GIRUS_POLL_INTERVAL": "poll_interval",
            "GIRUS_PROBE_TIMEOUT": "probe_timeout",
        }
        for var, attr in float_vars.items():
            raw = environ.get(var)
            if not raw:
                continue
            try:
                values[attr] = float(raw)
            except ValueError:
                raise ValueError(f"{var} must be a number, got {raw!r}") from None

        values.update({k: v for k, v in overrides.items() if v is not None})
        if "state_dir" in values:
            values["state_dir"] = Path(values["state_dir"]).expanduser()

        return cls(**values)

    def with_overrides(self, **overrides):
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
