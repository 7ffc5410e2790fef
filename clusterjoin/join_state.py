"""
ClusterJoin Join State Persistence
Durable record of a completed join decision
"""

import logging
import os

from .errors import PersistenceIOError

logger = logging.getLogger(__name__)

JOIN_MARKER = "join"

# Owner-only permissions for the data directory and the marker file
PRIVATE_DIR_MODE = 0o700
PRIVATE_FILE_MODE = 0o600


class JoinStatePersister:
    """
    Reads and writes the join marker at <data_dir>/join.

    The marker holds the initial-cluster descriptor and nothing else. Once it
    exists every later start of this node reuses it instead of contacting the
    cluster, so it is written exactly once and never replaced.
    """

    def __init__(self, data_dir: str, marker_name: str = JOIN_MARKER):
        self.data_dir = data_dir
        self.marker_path = os.path.join(data_dir, marker_name)

    def exists(self) -> bool:
        return os.path.lexists(self.marker_path)

    def read(self) -> str:
        """Return the persisted descriptor with surrounding whitespace removed"""
        try:
            with open(self.marker_path, 'r') as f:
                return f.read().strip()
        except OSError as e:
            raise PersistenceIOError(f"read the join config meet error: {e}") from e

    def persist(self, initial_cluster: str):
        """Create the data directory if needed and write the marker exclusively"""
        try:
            os.makedirs(self.data_dir, mode=PRIVATE_DIR_MODE, exist_ok=True)
        except OSError as e:
            raise PersistenceIOError(f"failed to create data directory {self.data_dir}: {e}") from e

        try:
            fd = os.open(self.marker_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_FILE_MODE)
        except FileExistsError as e:
            raise PersistenceIOError(f"join marker {self.marker_path} already exists") from e
        except OSError as e:
            raise PersistenceIOError(f"failed to create join marker {self.marker_path}: {e}") from e

        try:
            with os.fdopen(fd, 'w') as f:
                f.write(initial_cluster)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            # A truncated marker would be trusted on the next start
            try:
                os.unlink(self.marker_path)
            except OSError as cleanup_error:
                logger.error(f"Failed to remove partial join marker {self.marker_path}: {cleanup_error}")
            raise PersistenceIOError(f"failed to write join marker {self.marker_path}: {e}") from e

        self._sync_directory()
        logger.info(f"Persisted join marker at {self.marker_path}")

    def _sync_directory(self):
        """Flush the directory entry of a newly created marker"""
        try:
            dir_fd = os.open(self.data_dir, os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError as e:
            raise PersistenceIOError(f"failed to sync data directory {self.data_dir}: {e}") from e
