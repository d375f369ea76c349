"""Publish engine snapshots to the status file.

Menu surfaces and the CLI `status` command read the file instead of talking
to the daemon.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from ..config import atomic_write_json
from ..constants import ConfigPaths
from ..models.state import EngineState

logger = logging.getLogger(__name__)


class StatusPublisher:
    """Engine state listener writing the latest EngineState as JSON."""

    def __init__(self, status_file: Path = ConfigPaths.STATUS_FILE) -> None:
        self.status_file = status_file
        self.publish_count = 0

    def __call__(self, state: EngineState) -> None:
        self.publish(state)

    def publish(self, state: EngineState) -> None:
        """Write the snapshot atomically. Failures are logged, not raised."""
        try:
            atomic_write_json(state.to_status_json(), self.status_file, ".status-")
        except OSError as e:
            logger.error(f"Failed to publish status to {self.status_file}: {e}")
            return
        self.publish_count += 1

    def clear(self) -> None:
        """Remove the status file (daemon shutdown)."""
        try:
            self.status_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove status file {self.status_file}: {e}")


def read_status(status_file: Path = ConfigPaths.STATUS_FILE) -> Optional[dict]:
    """Read the published status, or None if the daemon is not publishing."""
    try:
        with open(status_file) as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read status file {status_file}: {e}")
        return None
