import atexit
import logging
import os
import signal
import tempfile
import threading
from contextlib import suppress
from pathlib import Path
from typing import Optional, Set, Union

from .errors import WorkspaceCreationError

log = logging.getLogger("cellpose_detector")


def delete_tree(path: Union[str, Path]) -> None:
    """Delete `path` recursively, files before their directories.

    Entries that disappear while walking are skipped, so this is safe to call
    more than once and from an exit hook.
    """
    root = Path(path)
    if not root.exists():
        return
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        for fname in filenames:
            with suppress(FileNotFoundError):
                os.unlink(os.path.join(dirpath, fname))
        for dname in dirnames:
            p = os.path.join(dirpath, dname)
            with suppress(FileNotFoundError):
                if os.path.islink(p):
                    os.unlink(p)
                else:
                    os.rmdir(p)
    with suppress(FileNotFoundError):
        os.rmdir(root)


# workspaces not yet released, deleted on interpreter exit or SIGTERM
_pending: Set[Path] = set()
_lock = threading.RLock()  # the signal handler runs on the main thread
_previous_sigterm = None
_sigterm_installed = False


def _delete_pending() -> None:
    with _lock:
        paths = list(_pending)
        _pending.clear()
    for path in paths:
        try:
            delete_tree(path)
        except OSError as e:
            log.warning("Failed to delete workspace %s: %s", path, e)


atexit.register(_delete_pending)


def _signal_cleanup(signum, frame):
    """Delete pending workspaces on SIGTERM, then hand over to the previous handler."""
    _delete_pending()
    if callable(_previous_sigterm):
        _previous_sigterm(signum, frame)
    raise SystemExit(128 + signum)


def _install_sigterm_handler() -> None:
    global _previous_sigterm, _sigterm_installed
    if _sigterm_installed or threading.current_thread() is not threading.main_thread():
        return
    previous = signal.getsignal(signal.SIGTERM)
    if previous is signal.SIG_IGN:
        return
    _previous_sigterm = previous
    signal.signal(signal.SIGTERM, _signal_cleanup)
    _sigterm_installed = True


class Workspace:
    """Uniquely named temporary directory owned by a single detection run.

    Deleted on `release()` (or leaving the `with` block) and, failing that,
    when the interpreter exits or receives SIGTERM.
    """

    def __init__(self, path: Path):
        self.path = path
        self._released = False
        with _lock:
            _pending.add(path)
        _install_sigterm_handler()

    @classmethod
    def acquire(cls, prefix: str = "Cellpose_", base_dir: Optional[Path] = None) -> "Workspace":
        try:
            path = Path(tempfile.mkdtemp(prefix=prefix, dir=base_dir))
        except OSError as e:
            raise WorkspaceCreationError(f"Could not create tmp dir to save and load images:\n{e}") from e
        log.debug("Created workspace %s", path)
        return cls(path)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        with _lock:
            _pending.discard(self.path)
        delete_tree(self.path)
        log.debug("Deleted workspace %s", self.path)

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
