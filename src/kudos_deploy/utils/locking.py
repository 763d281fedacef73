"""Advisory lock keeping two runs off the same resource prefix."""
import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

from kudos_deploy.errors import LockError

logger = logging.getLogger(__name__)


class AdvisoryLock:
    """Exclusive, non-blocking ``flock`` on ``<lock_dir>/<name>.lock``.

    Only cooperating kudos-deploy processes honour it; Terraform's own state
    lock still guards the remote state.
    """

    def __init__(self, lock_dir: str, name: str):
        self.path = Path(lock_dir) / f"{name}.lock"
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self, owner: str = "") -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            holder = ""
            try:
                holder = os.read(fd, 256).decode("utf-8", "replace").strip()
            finally:
                os.close(fd)
            raise LockError(
                f"Another run holds the lock {self.path}" + (f" ({holder})" if holder else ""),
                details={"lock_file": str(self.path), "holder": holder},
            )

        os.ftruncate(fd, 0)
        os.write(fd, f"{owner or 'kudos-deploy'} pid={os.getpid()}".encode("utf-8"))
        self._fd = fd
        logger.debug(f"Acquired advisory lock {self.path}")

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug(f"Released advisory lock {self.path}")

    def __enter__(self) -> "AdvisoryLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
