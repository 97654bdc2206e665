"""
Ephemeral per-run workspaces.

Every verification run gets its own private directory. It is removed on every
exit path; a failed removal is logged and never surfaces to the caller.
"""

import logging
import shutil
import tempfile
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

logger = logging.getLogger(__name__)


class WorkspaceError(RuntimeError):
    """Raised when a workspace cannot be allocated (disk full, bad root, ...)."""


class Workspace:
    def __init__(self, path: Path, run_id: str):
        self.path = Path(path)
        self.run_id = run_id
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def file(self, name: str) -> Path:
        return self.path / name

    def write(self, name: str, content: str) -> Path:
        target = self.file(name)
        target.write_text(content, encoding="utf-8")
        return target

    def release(self) -> None:
        """Deletes the workspace directory. Safe to call any number of times."""
        with self._lock:
            if self._released:
                return
            self._released = True
        try:
            shutil.rmtree(self.path)
            logger.info(f"Released workspace {self.run_id}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clean up workspace {self.path}: {e}")

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"Workspace(run_id={self.run_id!r}, path={str(self.path)!r})"


class WorkspaceManager:
    def __init__(self, root: Optional[Union[Path, str]] = None, prefix: str = "codementor-run-"):
        self.root = Path(root) if root else None
        self.prefix = prefix

    def acquire(self) -> Workspace:
        run_id = uuid.uuid4().hex[:12]
        try:
            if self.root is not None:
                self.root.mkdir(parents=True, exist_ok=True)
            path = tempfile.mkdtemp(prefix=f"{self.prefix}{run_id}-", dir=str(self.root) if self.root else None)
        except OSError as e:
            raise WorkspaceError(f"Could not allocate a workspace: {e}") from e
        logger.info(f"Acquired workspace {run_id} at {path}")
        return Workspace(Path(path), run_id)

    @contextmanager
    def session(self) -> Iterator[Workspace]:
        workspace = self.acquire()
        try:
            yield workspace
        finally:
            workspace.release()
