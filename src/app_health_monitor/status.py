"""Publication of the status document read by the extension host."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from app_health_monitor.models import HealthState, StatusType, utc_now

logger = logging.getLogger(__name__)

STATUS_VERSION = 1
STATUS_LANG = "en"
STATUS_MESSAGE = "Successfully polling for application health"
SUBSTATUS_NAME = "AppHealthStatus"
ENABLE_OPERATION = "enable"

HEALTH_STATE_TO_STATUS_TYPE = {
    HealthState.HEALTHY: StatusType.SUCCESS,
    HealthState.UNHEALTHY: StatusType.ERROR,
}

HEALTH_STATE_TO_MESSAGE = {
    HealthState.HEALTHY: "Application found to be healthy",
    HealthState.UNHEALTHY: "Application found to be unhealthy",
}


class StatusPublishError(Exception):
    """The status document could not be written."""


def _formatted_message(message: str) -> dict[str, str]:
    return {"lang": STATUS_LANG, "message": message}


def render_status(
    operation: str,
    status: StatusType,
    message: str,
    substatus: list[dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """Build a status document.
    
    The host expects a JSON array holding a single status record.
    """
    inner: dict[str, Any] = {
        "name": operation,
        "operation": operation,
        "status": status.value,
        "formattedMessage": _formatted_message(message),
    }
    if substatus is not None:
        inner["substatus"] = substatus
    
    return [
        {
            "version": STATUS_VERSION,
            "timestampUTC": utc_now().strftime("%Y-%m-%dT%H:%M:%SZ"),
            "status": inner,
        }
    ]


def render_health_status(derived_state: HealthState) -> list[dict[str, Any]]:
    """Build the status document for a derived health state.
    
    The outer status is always success: it describes the polling process,
    not the monitored application.
    """
    return render_status(
        ENABLE_OPERATION,
        StatusType.SUCCESS,
        STATUS_MESSAGE,
        substatus=[
            {
                "name": SUBSTATUS_NAME,
                "status": HEALTH_STATE_TO_STATUS_TYPE[derived_state].value,
                "formattedMessage": _formatted_message(HEALTH_STATE_TO_MESSAGE[derived_state]),
            }
        ],
    )


class StatusPublisher:
    """Sole writer of ``<status_folder>/<sequence>.status`` files."""
    
    def __init__(self, status_folder: str | Path) -> None:
        self.status_folder = Path(status_folder)
    
    def status_path(self, sequence_id: int) -> Path:
        return self.status_folder / f"{sequence_id}.status"
    
    def publish(self, derived_state: HealthState, sequence_id: int) -> Path:
        """Atomically replace the status file with the given health state.
        
        Raises:
            StatusPublishError: If the document could not be written.
        """
        return self._write(self.status_path(sequence_id), render_health_status(derived_state))
    
    def publish_operation(
        self,
        operation: str,
        status: StatusType,
        message: str,
        sequence_id: int,
    ) -> Path:
        """Report the outcome of a lifecycle operation without health detail."""
        return self._write(self.status_path(sequence_id), render_status(operation, status, message))
    
    def read(self, sequence_id: int) -> list[dict[str, Any]] | None:
        """Read back the last complete document, if any."""
        path = self.status_path(sequence_id)
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)
    
    def _write(self, path: Path, document: list[dict[str, Any]]) -> Path:
        """Write to a temp file in the target directory, then rename over it.
        
        Readers never observe a partially written document.
        """
        try:
            content = json.dumps(document)
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path_str = tempfile.mkstemp(dir=path.parent, prefix=".tmp_", suffix=".tmp")
        except (OSError, TypeError, ValueError) as e:
            raise StatusPublishError(f"failed to write status file {path}: {e}") from e
        
        tmp_path = Path(tmp_path_str)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StatusPublishError(f"failed to write status file {path}: {e}") from e
        
        logger.debug(f"Published status to {path}")
        return path
