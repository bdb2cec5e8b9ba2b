import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from threading import Lock

import redis
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from track_view_functions import StorageError, normalize_table, safe_int, split_view_key

logger = logging.getLogger(__name__)

BACKENDS = ("file", "memory", "redis", "mongo")
DEFAULT_VIEWS_FILE = "views.txt"
DEFAULT_REDIS_HASH = "views"
MONGO_DB_NAME = "api_views"
MONGO_COLLECTION_NAME = "views"


class CounterStore:
    """
    Persistence boundary for the view counter table.

    Keys are ``<type>_<id>`` strings built by the service, values are view counts.
    Implementations must apply ``increment`` atomically per key and must never
    expose a partially written table to readers.
    """

    def get(self, key: str) -> int:
        raise NotImplementedError

    def increment(self, key: str, amount: int = 1) -> int:
        raise NotImplementedError

    def all(self) -> dict:
        raise NotImplementedError

    @staticmethod
    def _check_amount(amount: int):
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1:
            raise ValueError("increment amount must be a positive integer")


class MemoryStore(CounterStore):
    """Mutex-guarded dictionary, used for tests and single-process setups."""

    def __init__(self, initial: dict | None = None):
        self._counts = normalize_table(initial or {})
        self._lock = Lock()

    def get(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def increment(self, key: str, amount: int = 1) -> int:
        self._check_amount(amount)
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + amount
            return self._counts[key]

    def all(self) -> dict:
        with self._lock:
            return dict(self._counts)


class JsonFileStore(CounterStore):
    """
    Counter table kept as one JSON object on local disk.

    Increments hold an advisory ``flock`` on a sidecar ``.lock`` file for the
    whole read-modify-write, so writers in other processes on the same host are
    serialized too. Writes go through a temporary file renamed over the table.
    """

    def __init__(self, path: str | Path = DEFAULT_VIEWS_FILE):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._thread_lock = Lock()

    @contextmanager
    def _exclusive(self):
        """
        Hold both the in-process lock and the advisory file lock.

        Raises:
            OSError: When the lock file cannot be created or locked.
        """
        with self._thread_lock:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            with self.lock_path.open("a") as fh:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _read_table(self):
        """
        Load the table, treating a missing or corrupt file as empty.

        Returns:
            dict[str, int]: Current counter table.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("could not read %s: %s", self.path, exc)
            return {}

        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.warning("%s does not hold valid JSON, using an empty table", self.path)
            return {}
        return normalize_table(decoded)

    def _write_table(self, table: dict):
        """
        Replace the table on disk in one rename.

        Args:
            table (dict): Full counter table to persist.

        Raises:
            OSError: When the temporary file cannot be written or renamed.
        """
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(table, fh, indent=4)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def ensure_exists(self):
        """Create the table file with an empty object when it is missing."""
        if self.path.exists():
            return
        with self._exclusive():
            if not self.path.exists():
                self._write_table({})

    def _ensure_for_read(self):
        try:
            self.ensure_exists()
        except OSError as exc:
            logger.warning("could not initialize %s: %s", self.path, exc)

    def get(self, key: str) -> int:
        self._ensure_for_read()
        return self._read_table().get(key, 0)

    def increment(self, key: str, amount: int = 1) -> int:
        self._check_amount(amount)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._exclusive():
                table = self._read_table()
                table[key] = table.get(key, 0) + amount
                self._write_table(table)
        except OSError as exc:
            logger.error("failed to persist view for %s in %s", key, self.path, exc_info=True)
            raise StorageError(f"could not write {self.path}") from exc
        logger.debug("%s -> %s views", key, table[key])
        return table[key]

    def all(self) -> dict:
        self._ensure_for_read()
        return self._read_table()


def decode_redis_value(value):
    """
    Turn a raw Redis reply into text.

    Args:
        value (bytes | str | None): Reply from a client without ``decode_responses``.

    Returns:
        str | None: Decoded value.
    """
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class RedisStore(CounterStore):
    """Counter table kept in one Redis hash; increments use ``HINCRBY``."""

    def __init__(self, redis_client: redis.Redis, hash_key: str = DEFAULT_REDIS_HASH):
        self.redis_client = redis_client
        self.hash_key = hash_key

    def get(self, key: str) -> int:
        try:
            raw = self.redis_client.hget(self.hash_key, key)
        except redis.RedisError as exc:
            logger.warning("redis read failed for %s: %s", key, exc)
            return 0
        return max(safe_int(decode_redis_value(raw), 0), 0)

    def increment(self, key: str, amount: int = 1) -> int:
        self._check_amount(amount)
        try:
            count = self.redis_client.hincrby(self.hash_key, key, amount)
        except redis.RedisError as exc:
            logger.error("redis increment failed for %s", key, exc_info=True)
            raise StorageError("could not increment view count in redis") from exc
        logger.debug("%s -> %s views", key, count)
        return int(count)

    def all(self) -> dict:
        try:
            raw = self.redis_client.hgetall(self.hash_key)
        except redis.RedisError as exc:
            logger.warning("redis read failed for %s: %s", self.hash_key, exc)
            return {}
        return normalize_table({decode_redis_value(k): decode_redis_value(v) for k, v in (raw or {}).items()})


class MongoStore(CounterStore):
    """
    Counter table kept as one MongoDB document per key.

    ``$inc`` on a single document is atomic, upserts create missing keys. Two
    concurrent upserts of a new key can collide on ``_id``; the loser retries
    once as a plain update.
    """

    def __init__(self, collection: Collection):
        self.collection = collection

    def get(self, key: str) -> int:
        try:
            document = self.collection.find_one({"_id": key}, {"views": 1})
        except PyMongoError as exc:
            logger.warning("mongo read failed for %s: %s", key, exc)
            return 0
        if not document:
            return 0
        return max(safe_int(document.get("views"), 0), 0)

    def increment(self, key: str, amount: int = 1) -> int:
        self._check_amount(amount)
        content_type, content_id = split_view_key(key) or (None, None)
        update = {
            "$inc": {"views": amount},
            "$setOnInsert": {"content_type": content_type, "content_id": content_id},
        }

        document = None
        for attempt in range(2):
            try:
                document = self.collection.find_one_and_update(
                    {"_id": key},
                    update,
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
                break
            except DuplicateKeyError as exc:
                if attempt:
                    raise StorageError("could not increment view count in mongo") from exc
            except PyMongoError as exc:
                logger.error("mongo increment failed for %s", key, exc_info=True)
                raise StorageError("could not increment view count in mongo") from exc

        count = safe_int((document or {}).get("views"), 0)
        logger.debug("%s -> %s views", key, count)
        return count

    def all(self) -> dict:
        try:
            documents = list(self.collection.find({}, {"views": 1}))
        except PyMongoError as exc:
            logger.warning("mongo read failed: %s", exc)
            return {}
        return normalize_table({str(doc.get("_id")): doc.get("views") for doc in documents})


def build_store_from_env(environ=None):
    """
    Build the counter store selected by ``VIEWS_BACKEND``.

    Args:
        environ (Mapping | None): Environment to read, ``os.environ`` by default.

    Returns:
        CounterStore: Configured store.

    Raises:
        ValueError: When the backend name is unknown.
    """
    env = os.environ if environ is None else environ
    backend = str(env.get("VIEWS_BACKEND", "file")).strip().lower()

    if backend == "file":
        return JsonFileStore(env.get("VIEWS_FILE", DEFAULT_VIEWS_FILE))

    if backend == "memory":
        return MemoryStore()

    if backend == "redis":
        r = redis.Redis(
            host=env.get("REDIS_HOST", "localhost"),
            port=int(env.get("REDIS_PORT", 6379)),
            db=int(env.get("REDIS_DB", 0)),
        )
        return RedisStore(r, env.get("VIEWS_REDIS_KEY", DEFAULT_REDIS_HASH))

    if backend == "mongo":
        client = MongoClient(env.get("MONGO_URI", "mongodb://localhost:27017"))
        return MongoStore(client[MONGO_DB_NAME][MONGO_COLLECTION_NAME])

    raise ValueError(f"Unknown VIEWS_BACKEND {backend!r}, expected one of {', '.join(BACKENDS)}")
