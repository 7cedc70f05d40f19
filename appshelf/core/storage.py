"""Object storage backends addressed by URL.

``open_store(url)`` picks a backend from the URL scheme:

- ``file:///srv/apps`` — a directory tree on local disk.
- ``mem://name`` — a process-wide named in-memory bucket.
- ``s3://bucket?endpoint_url=...&region=...`` — S3 or any S3-compatible
  service (R2, MinIO) through boto3.

Every backend accepts repeated ``env=KEY=VALUE`` query parameters. They are
applied to the process environment while the backend is constructed, so
SDK credential chains can be configured per bucket.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import BinaryIO, ClassVar, Protocol
from urllib.parse import parse_qs, unquote, urlsplit

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """A storage backend failed or could not be opened."""


class ObjectNotFoundError(StorageError):
    """The requested object key does not exist."""


class Store(Protocol):
    """What reconcilers need from a bucket."""

    def open_reader(self, key: str) -> BinaryIO: ...

    def open_writer(self, key: str, content_type: str): ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str = "") -> Iterator[str]: ...

    def exists(self, key: str) -> bool: ...


def _clean_key(key: str) -> str:
    """Normalise an object key; reject keys that escape the bucket."""
    parts = [p for p in PurePosixPath(key.lstrip("/")).parts if p not in ("", ".")]
    if not parts or ".." in parts:
        raise StorageError(f"invalid object key {key!r}")
    return "/".join(parts)


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------

_TEMP_PREFIX = ".appshelf-tmp-"


class FileStore:
    """Keys map to files beneath ``root``.

    Writes land in a temporary sibling file and are renamed into place on
    success, so readers never observe a partial object.

    Parameters
    ----------
    root:
        Directory holding the objects. Created if missing.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        return f"FileStore({str(self._root)!r})"

    def _path(self, key: str) -> Path:
        return self._root / _clean_key(key)

    def open_reader(self, key: str) -> BinaryIO:
        path = self._path(key)
        try:
            return open(path, "rb")
        except (FileNotFoundError, IsADirectoryError) as exc:
            raise ObjectNotFoundError(f"object {key!r} not found") from exc
        except OSError as exc:
            raise StorageError(f"cannot open {key!r}: {exc}") from exc

    @contextmanager
    def open_writer(self, key: str, content_type: str) -> Iterator[BinaryIO]:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=_TEMP_PREFIX, dir=path.parent)
        except OSError as exc:
            raise StorageError(f"cannot write {key!r}: {exc}") from exc

        fh = os.fdopen(fd, "wb")
        try:
            yield fh
            fh.close()
            os.replace(tmp_name, path)
        except BaseException:
            fh.close()
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(f"object {key!r} not found") from exc
        except OSError as exc:
            raise StorageError(f"cannot delete {key!r}: {exc}") from exc

    def list(self, prefix: str = "") -> Iterator[str]:
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames.sort()
            rel_dir = Path(dirpath).relative_to(self._root)
            for filename in sorted(filenames):
                if filename.startswith(_TEMP_PREFIX):
                    continue
                key = (rel_dir / filename).as_posix()
                if key.startswith(prefix):
                    yield key

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class MemoryStore:
    """Named in-memory bucket shared by every ``MemoryStore`` of that name.

    Objects are kept as ``(content, content_type)``.
    """

    _buckets: ClassVar[dict[str, dict[str, tuple[bytes, str]]]] = {}
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, name: str) -> None:
        self.name = name
        with self._lock:
            self._objects = self._buckets.setdefault(name, {})

    def __repr__(self) -> str:
        return f"MemoryStore({self.name!r})"

    @classmethod
    def reset(cls, name: str | None = None) -> None:
        """Drop one named bucket, or all of them."""
        with cls._lock:
            if name is None:
                for objects in cls._buckets.values():
                    objects.clear()
            elif name in cls._buckets:
                cls._buckets[name].clear()

    def open_reader(self, key: str) -> BinaryIO:
        key = _clean_key(key)
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFoundError(f"object {key!r} not found")
        return io.BytesIO(entry[0])

    @contextmanager
    def open_writer(self, key: str, content_type: str) -> Iterator[BinaryIO]:
        key = _clean_key(key)
        buffer = io.BytesIO()
        yield buffer
        with self._lock:
            self._objects[key] = (buffer.getvalue(), content_type)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        with self.open_writer(key, content_type) as fh:
            fh.write(data)

    def content_type(self, key: str) -> str:
        with self._lock:
            entry = self._objects.get(_clean_key(key))
        if entry is None:
            raise ObjectNotFoundError(f"object {key!r} not found")
        return entry[1]

    def delete(self, key: str) -> None:
        key = _clean_key(key)
        with self._lock:
            if self._objects.pop(key, None) is None:
                raise ObjectNotFoundError(f"object {key!r} not found")

    def list(self, prefix: str = "") -> Iterator[str]:
        with self._lock:
            keys = sorted(self._objects)
        for key in keys:
            if key.startswith(prefix):
                yield key

    def exists(self, key: str) -> bool:
        with self._lock:
            return _clean_key(key) in self._objects


# ---------------------------------------------------------------------------
# S3-compatible
# ---------------------------------------------------------------------------

_S3_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class _S3Body(io.RawIOBase):
    """Adapts a botocore StreamingBody so read faults surface as OSError."""

    def __init__(self, body) -> None:
        self._body = body

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        from botocore.exceptions import BotoCoreError

        try:
            return self._body.read(None if size is None or size < 0 else size)
        except BotoCoreError as exc:
            raise OSError(str(exc)) from exc

    def readinto(self, b) -> int:
        data = self.read(len(b))
        b[: len(data)] = data
        return len(data)

    def close(self) -> None:
        if not self.closed:
            self._body.close()
        super().close()


class S3Store:
    """A bucket on S3 or an S3-compatible endpoint.

    Parameters
    ----------
    bucket:
        Bucket name.
    client:
        A boto3 S3 client.
    """

    def __init__(self, bucket: str, client) -> None:
        self._bucket = bucket
        self._client = client

    def __repr__(self) -> str:
        return f"S3Store({self._bucket!r})"

    @staticmethod
    def _is_missing(exc: Exception) -> bool:
        response = getattr(exc, "response", None) or {}
        return str(response.get("Error", {}).get("Code", "")) in _S3_MISSING_CODES

    def open_reader(self, key: str) -> BinaryIO:
        from botocore.exceptions import BotoCoreError, ClientError

        key = _clean_key(key)
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if self._is_missing(exc):
                raise ObjectNotFoundError(f"object {key!r} not found") from exc
            raise StorageError(f"cannot open {key!r}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"cannot open {key!r}: {exc}") from exc
        return _S3Body(response["Body"])  # type: ignore[return-value]

    @contextmanager
    def open_writer(self, key: str, content_type: str) -> Iterator[BinaryIO]:
        from botocore.exceptions import BotoCoreError, ClientError

        key = _clean_key(key)
        with tempfile.SpooledTemporaryFile(max_size=8 * 1024 * 1024) as spool:
            yield spool  # type: ignore[misc]
            spool.seek(0)
            try:
                self._client.upload_fileobj(
                    spool, self._bucket, key, ExtraArgs={"ContentType": content_type}
                )
            except (BotoCoreError, ClientError) as exc:
                raise StorageError(f"cannot write {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        key = _clean_key(key)
        # delete_object succeeds on missing keys; probe first.
        if not self.exists(key):
            raise ObjectNotFoundError(f"object {key!r} not found")
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"cannot delete {key!r}: {exc}") from exc

    def list(self, prefix: str = "") -> Iterator[str]:
        from botocore.exceptions import BotoCoreError, ClientError

        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    yield item["Key"]
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"cannot list {prefix!r}: {exc}") from exc

    def exists(self, key: str) -> bool:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._client.head_object(Bucket=self._bucket, Key=_clean_key(key))
        except ClientError as exc:
            if self._is_missing(exc):
                return False
            raise StorageError(f"cannot stat {key!r}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"cannot stat {key!r}: {exc}") from exc
        return True


# ---------------------------------------------------------------------------
# URL dispatch
# ---------------------------------------------------------------------------

# Environment mutation is process-wide; only one store opens at a time.
_ENV_LOCK = threading.Lock()


@contextmanager
def _scoped_env(pairs: list[str]) -> Iterator[None]:
    """Apply ``KEY=VALUE`` pairs to ``os.environ`` and restore them after."""
    updates: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise StorageError(f"invalid env parameter {pair!r}, expected KEY=VALUE")
        updates[name] = value

    with _ENV_LOCK:
        saved = {name: os.environ.get(name) for name in updates}
        os.environ.update(updates)
        try:
            yield
        finally:
            for name, previous in saved.items():
                if previous is None:
                    os.environ.pop(name, None)
                else:
                    os.environ[name] = previous


def _open_s3(bucket: str, query: dict[str, list[str]]) -> S3Store:
    import boto3
    from botocore.client import Config
    from botocore.exceptions import BotoCoreError

    if not bucket:
        raise StorageError("s3 URL must name a bucket")
    try:
        client = boto3.client(
            "s3",
            endpoint_url=query.get("endpoint_url", [None])[0],
            region_name=query.get("region", [None])[0],
            config=Config(signature_version="s3v4"),
        )
    except BotoCoreError as exc:
        raise StorageError(f"cannot open s3 bucket {bucket!r}: {exc}") from exc
    return S3Store(bucket, client)


def open_store(url: str) -> Store:
    """Open the bucket described by ``url``.

    Raises ``StorageError`` for malformed URLs, unknown schemes and backend
    construction failures.
    """
    parsed = urlsplit(url)
    query = parse_qs(parsed.query, keep_blank_values=True)
    scheme = parsed.scheme.lower()

    with _scoped_env(query.pop("env", [])):
        if scheme == "file":
            if parsed.netloc not in ("", "localhost"):
                raise StorageError(f"file URL must be local, got host {parsed.netloc!r}")
            path = unquote(parsed.path)
            if not path:
                raise StorageError(f"file URL {url!r} has no path")
            try:
                store: Store = FileStore(Path(path))
            except OSError as exc:
                raise StorageError(f"cannot open {url!r}: {exc}") from exc
        elif scheme == "mem":
            name = parsed.netloc or parsed.path.strip("/")
            if not name:
                raise StorageError("mem URL must name a bucket")
            store = MemoryStore(name)
        elif scheme == "s3":
            store = _open_s3(parsed.netloc, query)
        else:
            raise StorageError(f"unsupported bucket URL scheme {parsed.scheme!r}")

    logger.debug("opened %r", store)
    return store
