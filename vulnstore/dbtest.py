"""Fixture loading and assertions for databases used in tests."""

from __future__ import annotations

import json
import os
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from vulnstore.db import db_path, init_db
from vulnstore.kvstore import Bucket, Store, Transaction
from vulnstore.utils.files import load_json_file

Fixture = str | os.PathLike[str] | Mapping[str, Any] | Sequence[Mapping[str, Any]]


class NoBucketError(LookupError):
    """A bucket on the way to a key does not exist."""


def _encode_value(value: Any) -> bytes:
    """Stored bytes of a fixture value: text and bytes as they are, anything else as JSON."""
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def _bucket_entry(entry: Any) -> tuple[str, list[Any]]:
    pairs = entry.get("pairs") or [] if isinstance(entry, Mapping) else None
    name = entry.get("bucket") if isinstance(entry, Mapping) else None
    if not isinstance(name, str) or not isinstance(pairs, list):
        raise ValueError(f"malformed bucket entry: {entry!r}")
    return name, pairs


def _load_pairs(bucket: Bucket, pairs: Iterable[Any]) -> None:
    for pair in pairs:
        if isinstance(pair, Mapping) and "bucket" in pair:
            name, nested = _bucket_entry(pair)
            _load_pairs(bucket.create_bucket_if_not_exists(name), nested)
        elif isinstance(pair, Mapping) and isinstance(pair.get("key"), str):
            bucket.put(pair["key"], _encode_value(pair.get("value")))
        else:
            raise ValueError(f"malformed pair: {pair!r}")


def load_fixtures(db_file: str | os.PathLike[str], fixtures: Iterable[Fixture]) -> None:
    """Write fixture buckets into the store file, creating it if needed.

    A fixture is a JSON file path or the decoded data itself: a list of
    {"bucket": name, "pairs": [...]} where each pair is either
    {"key": key, "value": value} or another nested bucket entry.
    """
    path = os.fspath(db_file)
    os.makedirs(os.path.dirname(path) or ".", mode=0o700, exist_ok=True)
    entries: list[Any] = []
    for fixture in fixtures:
        if isinstance(fixture, (str, os.PathLike)):
            fixture = load_json_file(fixture)
        entries.extend([fixture] if isinstance(fixture, Mapping) else fixture)
    with Store(path) as store, store.update() as tx:
        for entry in entries:
            name, pairs = _bucket_entry(entry)
            _load_pairs(tx.create_bucket_if_not_exists(name), pairs)


def init_test_db(db_dir: str | os.PathLike[str], fixtures: Iterable[Fixture]) -> str:
    """Load fixtures into the database of db_dir and open it; return db_dir."""
    load_fixtures(db_path(db_dir), fixtures)
    init_db(db_dir)
    return os.fspath(db_dir)


def _nested_bucket(tx: Transaction, names: Sequence[str]) -> Bucket | None:
    """Bucket at the end of names; raises NoBucketError if a parent is missing."""
    bucket: Transaction | Bucket | None = tx
    for name in names:
        if bucket is None:
            raise NoBucketError(f"bucket error: {name} in {list(names)}")
        bucket = bucket.bucket(name)
    if isinstance(bucket, Transaction):
        raise NoBucketError(f"bucket error: {list(names)}")
    return bucket


def get_value(db_file: str | os.PathLike[str], keys: Sequence[str]) -> bytes | None:
    """Value at the bucket path keys[:-1] under key keys[-1], or None if the key is absent."""
    if len(keys) < 2:
        raise ValueError(f"malformed keys: {list(keys)}")
    with Store(db_file, read_only=True) as store, store.view() as tx:
        bucket = _nested_bucket(tx, keys[:-1])
        if bucket is None:
            raise NoBucketError(f"empty bucket: {list(keys[:-1])} (key {keys[-1]})")
        value = bucket.get(keys[-1])
        return None if value is None else bytes(value)


def assert_no_key(db_file: str | os.PathLike[str], keys: Sequence[str]) -> None:
    """Fail unless the key is absent."""
    value = get_value(db_file, keys)
    if value is not None:
        raise AssertionError(f"expected no value at {list(keys)}, found {value!r}")


def assert_no_bucket(db_file: str | os.PathLike[str], buckets: Sequence[str]) -> None:
    """Fail unless the last bucket of the path is absent."""
    with Store(db_file, read_only=True) as store, store.view() as tx:
        if _nested_bucket(tx, buckets) is not None:
            raise AssertionError(f"expected no bucket at {list(buckets)}")


def assert_json_eq(db_file: str | os.PathLike[str], keys: Sequence[str], want: Any) -> None:
    """Fail unless the stored JSON equals want once both are decoded."""
    want_data = json.loads(_encode_value(want))
    got = get_value(db_file, keys)
    if got is None:
        raise AssertionError(f"no value at {list(keys)}; want {want_data!r}")
    try:
        got_data = json.loads(got)
    except ValueError as exc:
        raise AssertionError(f"value at {list(keys)} is not JSON: {got!r}") from exc
    if got_data != want_data:
        raise AssertionError(f"value at {list(keys)}: got {got_data!r}, want {want_data!r}")