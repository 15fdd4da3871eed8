"""
Error taxonomy for DockerFlow.

Every failure a caller can see maps to one of these classes. Each carries a
stable ``kind`` string and the HTTP status the API layer answers with; the
exception handler in main.py renders them as ``{"error": ..., "kind": ...}``.
"""

from typing import Optional

import docker.errors


class DockerFlowError(Exception):
    """Base class for all DockerFlow errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class Unauthorized(DockerFlowError):
    """No identity, or identity not allowed to touch the target."""

    kind = "unauthorized"
    status_code = 401


class Forbidden(Unauthorized):
    """Authenticated, but the resource belongs to someone else or needs admin."""

    status_code = 403


class NotFound(DockerFlowError):
    """Target container, volume, image, backup or alert does not exist."""

    kind = "not_found"
    status_code = 404


class InvalidStateTransition(DockerFlowError):
    """Action is illegal for the current lifecycle state."""

    kind = "invalid_state_transition"
    status_code = 400


class AlreadyRunning(InvalidStateTransition):
    def __init__(self, message: str = "Container is already running"):
        super().__init__(message)


class AlreadyStopped(InvalidStateTransition):
    def __init__(self, message: str = "Container is already stopped"):
        super().__init__(message)


class InvalidRequest(DockerFlowError):
    """Query or body value the endpoint cannot act on."""

    kind = "invalid_request"
    status_code = 400


class Conflict(DockerFlowError):
    """Name or subdomain already taken."""

    kind = "conflict"
    status_code = 409


class QuotaExceeded(DockerFlowError):
    kind = "quota_exceeded"
    status_code = 400


class DockerRuntimeError(DockerFlowError):
    """Opaque failure from the Docker Engine. The message is passed through."""

    kind = "runtime_error"
    status_code = 500


class RestartTimeout(DockerFlowError):
    """Restarted container never reached the running state."""

    kind = "restart_timeout"
    status_code = 504

    def __init__(
        self,
        message: str = "Container failed to reach running state after restart",
        attempts: int = 0,
    ):
        super().__init__(message, details={"attempts": attempts})
        self.attempts = attempts


def docker_error_message(error: Exception) -> str:
    """Best human-readable message for a docker SDK exception."""
    explanation = getattr(error, "explanation", None)
    if explanation:
        return str(explanation)
    return str(error)


def translate_docker_error(error: Exception, what: str = "Resource") -> DockerFlowError:
    """
    Map a docker SDK exception onto the taxonomy.

    docker.errors.NotFound becomes NotFound, anything else DockerRuntimeError
    carrying the engine's message verbatim.
    """
    if isinstance(error, DockerFlowError):
        return error
    if isinstance(error, docker.errors.NotFound):
        return NotFound(f"{what} not found: {docker_error_message(error)}")
    return DockerRuntimeError(docker_error_message(error))
