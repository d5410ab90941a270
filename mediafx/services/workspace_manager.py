"""
Workspace Manager - Private scratch directories for montage jobs.

Each job gets one uniquely named directory under the configured workspace
root. Downloaded sources, extracted segments, the concat manifest and the
final artifact all live inside it, so tearing a job down is a single
recursive removal.

Layout:
    <workspace_root>/job-<uuid>/
    ├── sources/
    ├── segments/
    ├── concat.txt
    └── montage.mp4
"""

import logging
import os
import shutil
import threading
import uuid
from dataclasses import dataclass
from typing import Optional

from mediafx.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """Scratch directory owned by exactly one job."""

    name: str
    path: str
    destroyed: bool = False

    @property
    def sources_dir(self) -> str:
        return os.path.join(self.path, "sources")

    @property
    def segments_dir(self) -> str:
        return os.path.join(self.path, "segments")

    def file_path(self, filename: str) -> str:
        """Path of a file directly under the workspace root."""
        return os.path.join(self.path, filename)

    def exists(self) -> bool:
        return os.path.isdir(self.path)


class WorkspaceManager:
    """
    Allocates and reclaims job workspaces.

    destroy() is idempotent: the first call removes the directory, later
    calls for the same workspace are no-ops. Removal problems are logged and
    never raised.
    """

    def __init__(self, root: Optional[str] = None):
        self.settings = get_settings()
        self.root = root or self.settings.workspace_root
        self._lock = threading.Lock()

    def create(self) -> Workspace:
        """Create a new, empty workspace directory."""
        os.makedirs(self.root, exist_ok=True)
        name = f"job-{uuid.uuid4().hex}"
        path = os.path.join(self.root, name)

        # exist_ok=False: a name collision must not hand out a shared directory
        os.makedirs(path, exist_ok=False)
        workspace = Workspace(name=name, path=path)
        os.makedirs(workspace.sources_dir)
        os.makedirs(workspace.segments_dir)

        logger.debug(f"Workspace created: {path}")
        return workspace

    def destroy(self, workspace: Workspace) -> bool:
        """
        Remove a workspace recursively (best effort).

        Returns:
            True if this call performed the teardown, False if the workspace
            had already been destroyed.
        """
        with self._lock:
            if workspace.destroyed:
                return False
            workspace.destroyed = True

        try:
            self._remove_tree(workspace.path)
            logger.info(f"Workspace removed: {workspace.path}")
        except CleanupError as e:
            logger.warning(f"Workspace cleanup incomplete: {e}")
        return True

    def _remove_tree(self, path: str) -> None:
        if not os.path.exists(path):
            return

        # ignore_errors keeps removing siblings when one entry fails
        shutil.rmtree(path, ignore_errors=True)

        if os.path.exists(path):
            leftovers = []
            for dirpath, _dirnames, filenames in os.walk(path):
                leftovers.extend(os.path.join(dirpath, f) for f in filenames)
            raise CleanupError(
                f"{path} still present after removal "
                f"({len(leftovers)} file(s) left: {leftovers[:5]})"
            )


class CleanupError(Exception):
    """Raised internally when a workspace could not be fully removed."""
    pass
