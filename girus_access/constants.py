"""Shared constants for girus-access.

Centralizes the default lab workloads, port mappings, probe policies and
acceptable HTTP status codes used by the readiness poller and the access
supervisor.
"""

# Namespace the Girus lab environment is deployed to.
DEFAULT_NAMESPACE = "girus"

# Per-user directory holding PID records and forwarder logs.
STATE_DIR_NAME = ".girus"

BACKEND_ROLE = "backend"
FRONTEND_ROLE = "frontend"

BACKEND_SERVICE = "girus-backend"
FRONTEND_SERVICE = "girus-frontend"

BACKEND_PORT = 8080
FRONTEND_LOCAL_PORT = 8000
FRONTEND_REMOTE_PORT = 80

# Well-known application health endpoint served by the backend.
HEALTH_PATH = "/api/v1/health"

# A forwarded endpoint only counts as connected with one of these statuses.
ACCEPTABLE_STATUS_CODES: tuple[int, ...] = (200, 301, 302)

# Readiness poller timing (seconds).
POLL_INTERVAL = 0.5
READINESS_TIMEOUT = 300

# Per-call timeouts for API queries, HTTP probes and in-cluster exec (seconds).
API_TIMEOUT = 2
PROBE_TIMEOUT = 2.0

# Seconds to wait for a terminated process before killing it.
TERMINATE_TIMEOUT = 5

# (settle seconds, probe attempts, seconds between attempts) per strategy.
# SERVICE attempts apply to the primary mapping; later mappings use
# SECONDARY_SERVICE_ATTEMPTS.
STRATEGY_POLICIES: dict[str, tuple[float, int, float]] = {
    "service": (1.0, 5, 1.0),
    "scripted": (2.0, 5, 2.0),
    "foreground": (3.0, 3, 1.0),
    "deployment": (3.0, 1, 0.0),
}
SECONDARY_SERVICE_ATTEMPTS = 3

# Command-line fragments identifying a kubectl port-forward process.
FORWARDER_SIGNATURE: tuple[str, ...] = ("kubectl", "port-forward")
