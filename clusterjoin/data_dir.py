"""
ClusterJoin Data Directory Inspection
Decides whether the consensus engine already has replicated state on local disk
"""

import logging
import os

logger = logging.getLogger(__name__)

# Subdirectory the consensus engine keeps its WAL and snapshots in
MEMBER_DIR = "member"


class DataDirectoryInspector:
    """Looks at the local data directory before any network I/O"""

    def __init__(self, data_dir: str, member_dir: str = MEMBER_DIR):
        self.data_dir = data_dir
        self.member_path = os.path.join(data_dir, member_dir)

    def has_replicated_state(self) -> bool:
        """True only when the consensus storage directory exists and is non-empty"""
        try:
            with os.scandir(self.member_path) as entries:
                for _ in entries:
                    return True
                return False
        except FileNotFoundError as e:
            logger.info(f"Failed to open directory, maybe start for the first time: {e}")
            return False
        except OSError as e:
            logger.error(f"Failed to list directory {self.member_path}: {e}")
            return False
