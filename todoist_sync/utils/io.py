"""
Safe I/O operations with atomic writes and cooperative file locking.
"""

import contextlib
import errno
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

try:  # fcntl is only available on POSIX platforms
    import fcntl  # type: ignore
except ImportError:  # pragma: no cover - Windows fallback
    fcntl = None  # type: ignore


DEFAULT_LOCK_TIMEOUT = 8.0  # seconds
LOCK_SLEEP_INTERVAL = 0.05  # seconds

logger = logging.getLogger(__name__)


def _lock_file_path(path: Path) -> Path:
    """Return the companion lock file path for the target file."""
    return path.parent / f"{path.name}.lock"


@contextlib.contextmanager
def file_lock(target_path: Path, exclusive: bool, timeout: float = DEFAULT_LOCK_TIMEOUT) -> Iterator[None]:
    """Acquire a cooperative file lock around the target path.

    Uses POSIX advisory locking via fcntl when available; otherwise acts as a no-op.
    """
    if fcntl is None:
        yield
        return

    lock_path = _lock_file_path(target_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    lock_type = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
    deadline = time.monotonic() + timeout if timeout is not None else None

    with open(lock_path, "a") as lock_file:
        while True:
            try:
                flags = lock_type | fcntl.LOCK_NB if deadline is not None else lock_type
                fcntl.flock(lock_file.fileno(), flags)
                break
            except OSError as exc:  # pragma: no cover - depends on timing
                if exc.errno not in (errno.EACCES, errno.EAGAIN):
                    raise
                if deadline is not None and time.monotonic() >= deadline:
                    raise TimeoutError(f"Timed out waiting for lock on {target_path}") from exc
                time.sleep(LOCK_SLEEP_INTERVAL)

        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


def safe_read_json(file_path: str, default: Optional[Dict] = None, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> Dict[str, Any]:
    """
    Safely read JSON from file with error handling.

    Args:
        file_path: Path to JSON file
        default: Default value to return if file doesn't exist or is invalid

    Returns:
        Parsed JSON data or default value
    """
    if default is None:
        default = {}

    path_obj = Path(os.path.expanduser(str(file_path)))
    if not path_obj.exists():
        return default

    try:
        with file_lock(path_obj, exclusive=False, timeout=lock_timeout):
            with path_obj.open('r', encoding='utf-8') as handle:
                return json.load(handle)
    except TimeoutError as exc:
        logger.warning(f"Timed out waiting to read {file_path}: {exc}")
        return default
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning(f"Failed to read {file_path}: {exc}")
        return default


def safe_write_json(file_path: str, data: Dict[str, Any], indent: int = 2, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> bool:
    """
    Safely write JSON to file with atomic write.

    Returns:
        True if successful, False otherwise
    """
    try:
        content = json.dumps(data, indent=indent, ensure_ascii=False, sort_keys=True)
        atomic_write_verified(file_path, content, lock_timeout=lock_timeout)
        return True
    except (TypeError, ValueError, OSError) as exc:
        logger.error(f"Error writing to {file_path}: {exc}")
        return False


def atomic_write_verified(file_path: str, content: str, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
    """
    Write ``content`` to a temp file, read it back, then rename over ``file_path``.

    The primary file is only ever touched by the final ``os.replace``; any
    failure before that leaves it exactly as it was.

    Raises:
        OSError: if writing, verification or the rename fails
        TimeoutError: if the lock cannot be acquired
    """
    path_obj = Path(os.path.expanduser(str(file_path)))
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    expected = content.encode('utf-8')

    tmp_path = None
    try:
        with file_lock(path_obj, exclusive=True, timeout=lock_timeout):
            with tempfile.NamedTemporaryFile(
                mode='wb',
                dir=str(path_obj.parent),
                prefix='.tmp_',
                suffix=path_obj.suffix,
                delete=False,
            ) as tmp_file:
                tmp_path = Path(tmp_file.name)
                tmp_file.write(expected)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())

            written = tmp_path.read_bytes()
            if written != expected:
                raise OSError(
                    f"Verification failed for {tmp_path}: wrote {len(expected)} bytes, read back {len(written)}"
                )

            os.replace(str(tmp_path), str(path_obj))
            tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass
