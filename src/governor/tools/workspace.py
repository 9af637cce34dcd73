"""Per-application scratch workspaces that are rebuilt for every delivery run."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from ..utils.ids import is_safe_slug

__all__ = ["WorkspaceManager"]

LOGGER = logging.getLogger(__name__)


class WorkspaceManager:
    """Owns ``<root>/<app_id>/apps/<app_id>/`` for each application id."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def workspace_root(self, app_id: str) -> Path:
        if not is_safe_slug(app_id):
            raise ValueError(f"Application id is not a safe path segment: {app_id!r}")
        return self.root / app_id

    def app_dir(self, app_id: str) -> Path:
        """Directory the candidate application is generated into."""
        return self.workspace_root(app_id) / "apps" / app_id

    def reset(self, app_id: str) -> Path:
        """Delete any previous workspace for ``app_id`` and recreate the empty tree."""
        workspace = self.workspace_root(app_id)
        if workspace.exists():
            LOGGER.debug("Removing previous workspace %s", workspace)
            shutil.rmtree(workspace)
        self.app_dir(app_id).mkdir(parents=True)
        LOGGER.info("Workspace ready for %s at %s", app_id, workspace)
        return workspace
