# store.py
import logging
import struct
import threading
import traceback
from typing import List, NamedTuple

import redis

from file_utils import LockTimeout, acquire_lock, atomic_write_json, load_json, release_lock

logger = logging.getLogger(__name__)

BUCKET_NAME = "icecream"
MAX_ID = 2**64 - 1


class StorageError(Exception):
    """The underlying persistence operation failed."""


class Record(NamedTuple):
    id: int
    name: str


# ---------- Key Encoding ----------
def itob(n):
    """Encode an id as 8 big-endian bytes so byte order matches numeric order."""
    return struct.pack(">Q", n)


def btoi(b):
    return struct.unpack(">Q", b)[0]


def _next_sequence(current):
    if current >= MAX_ID:
        raise StorageError("sequence overflow")
    return current + 1


class RecordStore:
    """
    Durable id -> name mapping with an auto-incrementing id per bucket.

    Every operation is atomic: add/delete are read-write transactions,
    list is a read-only view of the last committed state.
    """

    backend = "abstract"

    def add(self, name: str) -> int:
        raise NotImplementedError

    def delete(self, id: int) -> str:
        raise NotImplementedError

    def list(self) -> List[Record]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


# ---------- File Backend ----------
class FileRecordStore(RecordStore):
    """
    Store backed by a single JSON file on local disk.

    Layout: {"buckets": {<bucket>: {"sequence": N, "records": {<hex key>: name}}}}
    where <hex key> is the 8-byte big-endian id rendered as 16 hex digits.
    A sidecar "<path>.lock" is flocked for the lifetime of the store, so only
    one process can have the file open at a time.
    """

    backend = "file"

    def __init__(self, path, bucket_name=BUCKET_NAME, timeout=3.0):
        self.path = path
        self.bucket_name = bucket_name
        self._write_lock = threading.Lock()

        logger.info("Opening store file %s (lock timeout %ss)", path, timeout)
        try:
            self._lock_file = acquire_lock(path + ".lock", timeout=timeout)
        except LockTimeout as e:
            raise StorageError(str(e)) from e
        except OSError as e:
            raise StorageError(f"cannot lock {path}: {e}") from e

        try:
            # Surface a corrupt file at startup rather than on first request
            self._load()
        except StorageError:
            self.close()
            raise

    def _load(self):
        try:
            data = load_json(self.path, {"buckets": {}})
        except (OSError, ValueError) as e:
            raise StorageError(f"cannot read {self.path}: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("buckets"), dict):
            raise StorageError(f"{self.path} is not a record store file")
        return data

    def _save(self, data):
        try:
            atomic_write_json(self.path, data)
        except (OSError, TypeError) as e:
            raise StorageError(f"cannot write {self.path}: {e}") from e

    def _update(self, fn):
        with self._write_lock:
            data = self._load()
            bucket = data["buckets"].setdefault(self.bucket_name, {"sequence": 0, "records": {}})
            try:
                result = fn(bucket)
            except (KeyError, TypeError, AttributeError) as e:
                raise StorageError(f"corrupt bucket {self.bucket_name!r}: {e!r}") from e
            self._save(data)
            return result

    def add(self, name):
        def _add(bucket):
            id = _next_sequence(bucket["sequence"])
            bucket["sequence"] = id
            bucket["records"][itob(id).hex()] = name
            return id

        id = self._update(_add)
        logger.debug("Stored record %d in %s", id, self.path)
        return id

    def delete(self, id):
        key = itob(id).hex()

        def _delete(bucket):
            return bucket["records"].pop(key, "")

        name = self._update(_delete)
        logger.debug("Deleted record %d from %s (existed: %s)", id, self.path, bool(name))
        return name

    def list(self):
        bucket = self._load()["buckets"].get(self.bucket_name)
        if bucket is None:
            raise StorageError(f"bucket {self.bucket_name!r} does not exist")
        try:
            return [Record(btoi(bytes.fromhex(k)), v) for k, v in sorted(bucket["records"].items())]
        except (KeyError, TypeError, AttributeError, ValueError, struct.error) as e:
            raise StorageError(f"corrupt bucket {self.bucket_name!r}: {e}") from e

    def close(self):
        lock_file, self._lock_file = getattr(self, "_lock_file", None), None
        if lock_file is not None:
            release_lock(lock_file)
            logger.info("Closed store file %s", self.path)


# ---------- Redis Backend ----------
SEQUENCE_FIELD = b"__sequence__"


def _decode(value):
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError as e:
        raise StorageError(f"stored name is not valid UTF-8: {e}") from e


class RedisRecordStore(RecordStore):
    """
    Store backed by one Redis hash.

    Record fields are the raw 8-byte keys; the sequence counter lives in the
    same hash so the bucket survives deleting its last record.
    """

    backend = "redis"

    def __init__(self, client, bucket_name=BUCKET_NAME):
        self.r = client
        self.bucket_name = bucket_name

    @classmethod
    def from_url(cls, url, bucket_name=BUCKET_NAME, timeout=5):
        logger.info("Initializing Redis...")
        try:
            client = redis.Redis.from_url(
                url,
                socket_connect_timeout=timeout,
                socket_timeout=timeout,
                decode_responses=False,
            )
            client.ping()
        except redis.RedisError as e:
            logger.error("Redis connection error: %s", e)
            logger.debug(traceback.format_exc())
            raise StorageError(f"cannot connect to Redis: {e}") from e
        logger.info("Connected to Redis successfully")
        return cls(client, bucket_name)

    def add(self, name):
        def _add(pipe):
            current = int(pipe.hget(self.bucket_name, SEQUENCE_FIELD) or 0)
            id = _next_sequence(current)
            pipe.multi()
            pipe.hset(self.bucket_name, mapping={SEQUENCE_FIELD: id, itob(id): name.encode("utf-8")})
            return id

        try:
            id = self.r.transaction(_add, self.bucket_name, value_from_callable=True)
        except redis.RedisError as e:
            raise StorageError(f"add failed: {e}") from e
        except ValueError as e:
            raise StorageError(f"corrupt sequence in hash {self.bucket_name!r}: {e}") from e
        logger.debug("Stored record %d in hash %s", id, self.bucket_name)
        return id

    def delete(self, id):
        key = itob(id)

        def _delete(pipe):
            name = pipe.hget(self.bucket_name, key)
            pipe.multi()
            pipe.hsetnx(self.bucket_name, SEQUENCE_FIELD, 0)
            pipe.hdel(self.bucket_name, key)
            return name

        try:
            name = self.r.transaction(_delete, self.bucket_name, value_from_callable=True)
        except redis.RedisError as e:
            raise StorageError(f"delete failed: {e}") from e
        return _decode(name) if name else ""

    def list(self):
        try:
            fields = self.r.hgetall(self.bucket_name)
        except redis.RedisError as e:
            raise StorageError(f"list failed: {e}") from e
        if not fields:
            raise StorageError(f"bucket {self.bucket_name!r} does not exist")
        return [
            Record(btoi(k), _decode(v))
            for k, v in sorted(fields.items())
            if len(k) == 8
        ]

    def close(self):
        self.r.close()


def open_store(config):
    """Open the Redis backend when a URL is configured, the file store otherwise."""
    if config.redis_url:
        return RedisRecordStore.from_url(config.redis_url)
    return FileRecordStore(config.db_path, timeout=config.lock_timeout)
