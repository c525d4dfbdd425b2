"""A file-backed key/value store of nested buckets with transactions."""

from __future__ import annotations

import base64
import binascii
import json
import os
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

import portalocker

_MAGIC = b"VULNSTORE-KV 1\n"
_LOCK_RETRY_SECONDS = 0.05

T = TypeVar("T")

# A bucket node maps names to stored bytes or to nested nodes.
_Node = dict


class StoreError(Exception):
    """A store operation failed."""


class StoreTimeoutError(StoreError):
    """The store file stayed locked by someone else."""


class StoreCorruptedError(StoreError):
    """The store file is not a valid store."""


class BucketNotFoundError(StoreError):
    """The bucket does not exist."""


def _sort_key(name: str) -> bytes:
    return name.encode("utf-8", "surrogatepass")


def _clone(node: _Node) -> _Node:
    return {name: _clone(v) if isinstance(v, dict) else v for name, v in node.items()}


def _encode(node: _Node) -> dict[str, Any]:
    return {
        name: {"b": _encode(value)}
        if isinstance(value, dict)
        else {"v": base64.b64encode(value).decode("ascii")}
        for name, value in node.items()
    }


def _decode(obj: Any, *, root: bool = False) -> _Node:
    if not isinstance(obj, dict):
        raise StoreCorruptedError("malformed bucket")
    node: _Node = {}
    for name, entry in obj.items():
        if not isinstance(entry, dict) or len(entry) != 1:
            raise StoreCorruptedError(f"malformed entry {name!r}")
        if "b" in entry:
            node[name] = _decode(entry["b"])
        elif "v" in entry and not root:
            try:
                node[name] = base64.b64decode(entry["v"], validate=True)
            except (binascii.Error, TypeError, ValueError) as exc:
                raise StoreCorruptedError(f"malformed value {name!r}") from exc
        else:
            raise StoreCorruptedError(f"malformed entry {name!r}")
    return node


def _parse(data: bytes) -> _Node:
    if not data.startswith(_MAGIC):
        raise StoreCorruptedError("invalid database file")
    try:
        obj = json.loads(data[len(_MAGIC):].decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise StoreCorruptedError(f"invalid database file: {exc}") from exc
    return _decode(obj, root=True)


def _child_bucket(node: _Node, name: str) -> _Node:
    if not name:
        raise StoreError("bucket name required")
    existing = node.get(name)
    if isinstance(existing, dict):
        return existing
    if existing is not None:
        raise StoreError(f"incompatible value: {name!r} holds a value")
    child: _Node = {}
    node[name] = child
    return child


class Bucket:
    """A named collection of values and nested buckets."""

    def __init__(self, tx: Transaction, node: _Node) -> None:
        self._tx = tx
        self._node = node

    def get(self, key: str) -> bytes | None:
        """Value stored under key, or None if absent or a bucket."""
        self._tx._check_open()
        value = self._node.get(key)
        return value if isinstance(value, bytes) else None

    def put(self, key: str, value: bytes) -> None:
        self._tx._check_writable()
        if not key:
            raise StoreError("key required")
        if isinstance(self._node.get(key), dict):
            raise StoreError(f"incompatible value: {key!r} is a bucket")
        self._node[key] = bytes(value)

    def bucket(self, name: str) -> Bucket | None:
        self._tx._check_open()
        child = self._node.get(name)
        return Bucket(self._tx, child) if isinstance(child, dict) else None

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        self._tx._check_writable()
        return Bucket(self._tx, _child_bucket(self._node, name))

    def items(self) -> Iterator[tuple[str, bytes | None]]:
        """Entries in byte order of their names; nested buckets give None."""
        self._tx._check_open()
        return self._iter_items(sorted(self._node, key=_sort_key))

    def _iter_items(self, names: list[str]) -> Iterator[tuple[str, bytes | None]]:
        for name in names:
            if name not in self._node:
                continue
            value = self._node[name]
            yield name, None if isinstance(value, dict) else value


class Transaction:
    """A view of the store's root buckets, writable or read-only."""

    def __init__(self, root: _Node, writable: bool) -> None:
        self._root = root
        self.writable = writable
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise StoreError("transaction closed")

    def _check_writable(self) -> None:
        self._check_open()
        if not self.writable:
            raise StoreError("transaction not writable")

    def bucket(self, name: str) -> Bucket | None:
        self._check_open()
        node = self._root.get(name)
        return Bucket(self, node) if isinstance(node, dict) else None

    def create_bucket_if_not_exists(self, name: str) -> Bucket:
        self._check_writable()
        return Bucket(self, _child_bucket(self._root, name))

    def delete_bucket(self, name: str) -> None:
        self._check_writable()
        if name not in self._root:
            raise BucketNotFoundError(f"bucket not found: {name}")
        del self._root[name]

    def root_names(self, prefix: str = "") -> list[str]:
        """Names of root buckets starting with prefix, in byte order."""
        self._check_open()
        return [name for name in sorted(self._root, key=_sort_key) if name.startswith(prefix)]


class Store:
    """A store file opened under an exclusive (or, read-only, shared) lock."""

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        timeout: float = 5.0,
        read_only: bool = False,
        mode: int = 0o644,
    ) -> None:
        self.path = os.fspath(path)
        self.read_only = read_only
        self._write_lock = threading.Lock()
        self._file = None

        if read_only:
            file = open(self.path, "rb")
        else:
            file = os.fdopen(os.open(self.path, os.O_RDWR | os.O_CREAT, mode), "r+b")
        try:
            self._acquire(file, timeout)
            data = file.read()
            root = _parse(data) if data else {}
        except BaseException:
            file.close()
            raise
        self._file = file
        self._root: _Node = root
        if not data and not read_only:
            self._commit(root)

    def _acquire(self, file: Any, timeout: float) -> None:
        flags = portalocker.LOCK_SH if self.read_only else portalocker.LOCK_EX
        deadline = time.monotonic() + timeout if timeout > 0 else None
        while True:
            try:
                portalocker.lock(file, flags | portalocker.LOCK_NB)
                return
            except portalocker.LockException as exc:
                if deadline is not None and time.monotonic() >= deadline:
                    raise StoreTimeoutError(
                        f"timeout while waiting for the lock on {self.path}"
                    ) from exc
                time.sleep(_LOCK_RETRY_SECONDS)

    @property
    def closed(self) -> bool:
        return self._file is None

    def _check_open(self) -> None:
        if self._file is None:
            raise StoreError("database not open")

    def close(self) -> None:
        """Release the lock and close the file; closing twice is harmless."""
        if self._file is None:
            return
        self._file.close()
        self._file = None

    @contextmanager
    def view(self) -> Iterator[Transaction]:
        """Read-only transaction."""
        self._check_open()
        tx = Transaction(self._root, writable=False)
        try:
            yield tx
        finally:
            tx._closed = True

    @contextmanager
    def update(self) -> Iterator[Transaction]:
        """Writable transaction, committed on normal exit and discarded on error."""
        self._check_open()
        if self.read_only:
            raise StoreError("database is in read-only mode")
        with self._write_lock:
            root = _clone(self._root)
            tx = Transaction(root, writable=True)
            try:
                yield tx
            finally:
                tx._closed = True
            self._commit(root)

    def batch(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn in a writable transaction and return its result."""
        with self.update() as tx:
            return fn(tx)

    def _commit(self, root: _Node) -> None:
        payload = _MAGIC + json.dumps(
            _encode(root), ensure_ascii=False, separators=(",", ":")
        ).encode("utf-8", "surrogatepass")
        file = self._file
        file.seek(0)
        file.truncate()
        file.write(payload)
        file.flush()
        os.fsync(file.fileno())
        self._root = root

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()