import os
import json
import fcntl
import time
import tempfile


class LockTimeout(Exception):
    """Raised when an exclusive file lock could not be taken in time."""


def acquire_lock(filename, timeout=3.0, poll_interval=0.05):
    """
    Take an exclusive flock on filename, waiting at most timeout seconds.

    The lock is held for as long as the returned file object stays open.

    Args:
        filename: Path to the lock file (created if missing)
        timeout: Seconds to keep retrying before giving up
        poll_interval: Seconds to sleep between attempts

    Returns:
        The open lock file object

    Raises:
        LockTimeout: if another process holds the lock past the deadline
    """
    os.makedirs(os.path.dirname(filename) if os.path.dirname(filename) else ".", exist_ok=True)

    f = open(filename, "a+")
    deadline = time.monotonic() + timeout
    while True:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            return f
        except BlockingIOError:
            if time.monotonic() >= deadline:
                f.close()
                raise LockTimeout(f"timed out after {timeout}s waiting for lock on {filename}")
            time.sleep(poll_interval)
        except OSError:
            f.close()
            raise


def release_lock(f):
    """Release a lock taken with acquire_lock and close its file."""
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    finally:
        f.close()


def load_json(filename, default=None):
    """
    Load JSON data from filename.

    Args:
        filename: Path to the JSON file
        default: Value to return if the file doesn't exist or is empty

    Returns:
        Loaded JSON data or default value

    Raises:
        json.JSONDecodeError: if the file holds something that is not JSON
    """
    if default is None:
        default = {}

    if not os.path.exists(filename):
        return default

    with open(filename, "r", encoding="utf-8") as f:
        raw = f.read()

    if not raw.strip():
        return default
    return json.loads(raw)


def atomic_write_json(filename, data):
    """
    Replace filename with the JSON encoding of data.

    The data is written to a temporary file in the same directory, fsynced
    and renamed over the target, so readers see either the old or the new
    contents and never a partial write.

    Args:
        filename: Path to the JSON file
        data: Data to save (must be JSON serializable)
    """
    directory = os.path.dirname(os.path.abspath(filename))
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, filename)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise

    # Persist the rename itself
    dir_fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)
