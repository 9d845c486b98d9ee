"""A per-program lock file that records the owner's PID."""

from __future__ import annotations

import errno
import os
import signal
import threading
from types import FrameType
from typing import Callable, Dict, Optional, Union

from .log import pr_debug, pr_warn
from .util import PATH_MAX

__all__ = ["DEFAULT_LOCK_DIR", "LockHeldError", "ProgLock"]

DEFAULT_LOCK_DIR = "/run"

_SIGNALS = tuple(
    sig
    for sig in (
        getattr(signal, "SIGHUP", None),
        signal.SIGINT,
        signal.SIGTERM,
    )
    if sig is not None
)

_Handler = Union[Callable[[int, Optional[FrameType]], object], int, None]


class LockHeldError(FileExistsError):
    """The lock file already exists and names another holder."""

    def __init__(self, pid: int, path: str) -> None:
        super().__init__(
            errno.EEXIST,
            f"Unable to get program lock: Already held by pid {pid}",
            path,
        )
        self.pid = pid


class ProgLock:
    """Exclusive lock held as ``<lock_dir>/<progname>.lck``.

    While held, SIGHUP, SIGINT and SIGTERM release the lock before the
    signal is delivered again with the previous disposition.
    """

    def __init__(self, progname: str, lock_dir: str = DEFAULT_LOCK_DIR) -> None:
        path = os.path.join(os.fspath(lock_dir), f"{progname}.lck")
        if len(path) >= PATH_MAX:
            raise OSError(errno.ENAMETOOLONG, os.strerror(errno.ENAMETOOLONG), path)
        self.path = path
        self._fd: Optional[int] = None
        self._pid = 0
        self._saved_handlers: Dict[int, _Handler] = {}

    @property
    def held(self) -> bool:
        """Whether this object currently holds the lock."""
        return self._fd is not None

    def _install_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in _SIGNALS:
            self._saved_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, self._on_signal)

    def _restore_handlers(self) -> None:
        for sig, handler in self._saved_handlers.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        self._saved_handlers.clear()

    def _on_signal(self, signum: int, _frame: Optional[FrameType]) -> None:
        self.release()
        pr_debug("Exiting on signal %d\n", signum)
        os.kill(self._pid or os.getpid(), signum)

    def _read_holder_pid(self) -> int:
        try:
            with open(self.path, "rb") as fp:
                data = fp.read(99)
        except OSError as exc:
            pr_warn("Unable to open lockfile for reading: %s\n", exc.strerror)
            raise
        digits = data.decode("ascii", errors="replace").strip().split("\n", 1)[0]
        try:
            pid = int(digits)
        except ValueError:
            pid = 0
        if pid <= 0:
            pr_warn("Unable to read PID from lockfile: %s\n", self.path)
            raise OSError(errno.EINVAL, "Unable to read PID from lockfile", self.path)
        return pid

    def acquire(self) -> None:
        """Create the lock file and write our PID into it."""
        if self._fd is not None:
            pr_warn("Attempt to get prog_lock twice.\n")
            raise RuntimeError("Attempt to get prog_lock twice")

        self._pid = os.getpid()
        self._install_handlers()

        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            self._restore_handlers()
            pid = self._read_holder_pid()
            pr_warn("Unable to get program lock: Already held by pid %d\n", pid)
            raise LockHeldError(pid, self.path) from None
        except OSError as exc:
            self._restore_handlers()
            pr_warn("Unable to get program lock: %s\n", exc.strerror)
            raise

        try:
            os.write(fd, f"{self._pid}\n".encode("ascii"))
            os.fsync(fd)
        except OSError as exc:
            pr_warn("Unable to write pid to lock file: %s\n", exc.strerror)
            try:
                os.unlink(self.path)
            except OSError:
                pass
            os.close(fd)
            self._restore_handlers()
            raise

        self._fd = fd

    def release(self) -> None:
        """Remove the lock file; a no-op when the lock is not held."""
        if self._fd is None:
            return
        self._restore_handlers()
        try:
            os.unlink(self.path)
        except OSError as exc:
            pr_warn("Unable to unlink lock file: %s\n", exc.strerror)
            return
        os.close(self._fd)
        self._fd = None

    def __enter__(self) -> "ProgLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()