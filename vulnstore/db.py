"""Vulnerability database: advisories, details and data sources kept in nested buckets."""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from vulnstore.kvstore import (
    Bucket,
    Store,
    StoreCorruptedError,
    StoreError,
    StoreTimeoutError,
    Transaction,
)
from vulnstore.log import with_prefix
from vulnstore.types import (
    Advisory,
    DataSource,
    SourceID,
    Vulnerability,
    VulnerabilityDetail,
)

T = TypeVar("T")

SCHEMA_VERSION = 2
DEFAULT_OPEN_TIMEOUT = 5.0
DB_FILE = "vulnstore.db"

ADVISORY_DETAIL_BUCKET = "advisory-detail"
DATA_SOURCE_BUCKET = "data-source"
VULNERABILITY_BUCKET = "vulnerability"
VULNERABILITY_DETAIL_BUCKET = "vulnerability-detail"
VULNERABILITY_ID_BUCKET = "vulnerability-id"
REDHAT_CPE_ROOT_BUCKET = "Red Hat CPE"
REDHAT_REPO_BUCKET = "repository"
REDHAT_NVR_BUCKET = "nvr"
REDHAT_CPE_BUCKET = "cpe"  # kept only for debugging

_db: Store | None = None


class DBError(Exception):
    """A database operation failed."""


@dataclass
class Options:
    """How the database file is opened."""

    timeout: float = DEFAULT_OPEN_TIMEOUT
    read_only: bool = False


@dataclass
class GetParams:
    """Query for the advisories of one package."""

    release: str = ""
    pkg_name: str = ""
    arch: str = ""


@dataclass
class Value:
    """A stored value together with the data source of its root bucket."""

    source: DataSource = field(default_factory=DataSource)
    content: bytes = b""


def db_path(db_dir: str | os.PathLike[str]) -> str:
    """Path of the database file in db_dir."""
    return os.path.join(os.fspath(db_dir), DB_FILE)


def init_db(db_dir: str | os.PathLike[str], options: Options | None = None) -> None:
    """Open the database in db_dir, creating the directory and the file if needed."""
    global _db
    options = options or Options()
    try:
        os.makedirs(db_dir, mode=0o700, exist_ok=True)
    except OSError as exc:
        raise DBError(f"failed to mkdir: {db_dir}: {exc}") from exc

    path = db_path(db_dir)
    try:
        store = Store(path, timeout=options.timeout, read_only=options.read_only)
    except StoreCorruptedError as exc:
        _db = None
        try:
            os.remove(path)
        except OSError as remove_exc:
            raise DBError(f"failed to remove corrupted db: {path}: {remove_exc}") from exc
        raise DBError(f"db corrupted: {path}: {exc}") from exc
    except StoreTimeoutError as exc:
        _db = None
        raise DBError(
            f"vulnerability database may be in use by another process: {path}: {exc}"
        ) from exc
    except (StoreError, OSError) as exc:
        _db = None
        raise DBError(f"failed to open db: {path}: {exc}") from exc
    _db = store


def close_db() -> None:
    """Close the open database; nothing happens if none is open."""
    global _db
    if _db is None:
        return
    try:
        _db.close()
    except OSError as exc:
        raise DBError(f"failed to close DB: {exc}") from exc
    finally:
        _db = None


def _store() -> Store:
    if _db is None:
        raise DBError("database not initialized")
    return _db


def _dumps(value: Any) -> bytes:
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    try:
        return json.dumps(value, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise DBError(f"json marshal error: {exc}") from exc


def _loads(content: bytes, what: str) -> Any:
    try:
        return json.loads(content)
    except ValueError as exc:
        raise DBError(f"json unmarshal error: {what}: {exc}") from exc


def _load_object(content: bytes, what: str, build: Callable[[dict[str, Any]], T]) -> T:
    data = _loads(content, what)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DBError(f"json unmarshal error: {what}: not an object")
    try:
        return build(data)
    except (TypeError, ValueError) as exc:
        raise DBError(f"json unmarshal error: {what}: {exc}") from exc


class Config:
    """Operations on the open database."""

    def connection(self) -> Store | None:
        return _db

    def batch_update(self, fn: Callable[[Transaction], T]) -> T:
        """Run fn in one writable transaction."""
        try:
            return _store().batch(fn)
        except (DBError, StoreError) as exc:
            raise DBError(f"batch update error: {exc}") from exc

    # -- generic helpers -------------------------------------------------

    def _put(self, tx: Transaction, bkt_names: Sequence[str], key: str, value: Any) -> None:
        if not bkt_names:
            raise DBError("empty bucket name")
        first, *rest = bkt_names
        try:
            bucket: Bucket = tx.create_bucket_if_not_exists(first)
        except StoreError as exc:
            raise DBError(f"failed to create bucket: {first}: {exc}") from exc
        for name in rest:
            try:
                bucket = bucket.create_bucket_if_not_exists(name)
            except StoreError as exc:
                raise DBError(f"failed to create bucket: {name}: {exc}") from exc
        encoded = _dumps(value)
        try:
            bucket.put(key, encoded)
        except StoreError as exc:
            raise DBError(f"failed to put {key!r}: {exc}") from exc

    def _get(self, bkt_names: Sequence[str], key: str) -> bytes | None:
        if not bkt_names:
            raise DBError("failed to get data from db: empty bucket name")
        try:
            with _store().view() as tx:
                bucket = tx.bucket(bkt_names[0])
                for name in bkt_names[1:]:
                    if bucket is None:
                        break
                    bucket = bucket.bucket(name)
                if bucket is None:
                    return None
                return bucket.get(key)
        except StoreError as exc:
            raise DBError(f"failed to get data from db: {exc}") from exc

    def _for_each(self, bkt_names: Sequence[str]) -> dict[str, Value]:
        if len(bkt_names) < 2:
            raise DBError(f"bucket must be nested: {list(bkt_names)}")
        root_name, nested = bkt_names[0], bkt_names[1:]
        values: dict[str, Value] = {}
        try:
            with _store().view() as tx:
                # "pip::" style names select every root bucket with that prefix
                roots = tx.root_names(root_name) if "::" in root_name else [root_name]
                for root in roots:
                    bucket = tx.bucket(root)
                    if bucket is None:
                        continue
                    try:
                        source = self._get_data_source(tx, root)
                    except DBError as exc:
                        with_prefix("db").debug("Data source error: %s", exc)
                        source = DataSource()
                    for name in nested:
                        bucket = bucket.bucket(name)
                        if bucket is None:
                            break
                    if bucket is None:
                        continue
                    for key, content in bucket.items():
                        if content:
                            values[key] = Value(source=source, content=bytes(content))
        except StoreError as exc:
            raise DBError(
                f"failed to get all key/value in the specified bucket: {exc}"
            ) from exc
        return values

    def _delete_bucket(self, bucket_name: str) -> None:
        try:
            with _store().update() as tx:
                tx.delete_bucket(bucket_name)
        except StoreError as exc:
            raise DBError(f"failed to delete bucket: {bucket_name}: {exc}") from exc

    # -- advisories ------------------------------------------------------

    def put_advisory(
        self, tx: Transaction, bkt_names: Sequence[str], key: str, advisory: Any
    ) -> None:
        try:
            self._put(tx, bkt_names, key, advisory)
        except DBError as exc:
            raise DBError(f"failed to put advisory: {key}: {exc}") from exc

    def for_each_advisory(self, sources: Sequence[str], pkg_name: str) -> dict[str, Value]:
        """Raw advisories of a package, keyed by vulnerability ID."""
        return self._for_each([*sources, pkg_name])

    def get_advisories(self, source: str, pkg_name: str) -> list[Advisory]:
        """Advisories of a package from one source, or from all sources with a prefix."""
        try:
            values = self.for_each_advisory([source], pkg_name)
        except DBError as exc:
            raise DBError(f"advisory foreach error: {exc}") from exc

        results = []
        for vuln_id, value in values.items():
            advisory = _load_object(value.content, vuln_id, Advisory.from_dict)
            advisory.vulnerability_id = vuln_id
            if not value.source.is_empty():
                advisory.data_source = DataSource(
                    id=value.source.id,
                    name=value.source.name,
                    url=value.source.url,
                    base_id=value.source.base_id,
                )
            results.append(advisory)
        return results

    # -- advisory details ------------------------------------------------

    def put_advisory_detail(
        self,
        tx: Transaction,
        vuln_id: str,
        pkg_name: str,
        nested_bkt_names: Sequence[str],
        advisory: Any,
    ) -> None:
        bkt_names = [ADVISORY_DETAIL_BUCKET, vuln_id, *nested_bkt_names]
        try:
            self._put(tx, bkt_names, pkg_name, advisory)
        except DBError as exc:
            raise DBError(
                f"failed to put advisory detail: {vuln_id} {pkg_name}: {exc}"
            ) from exc

    def save_advisory_details(self, tx: Transaction, vuln_id: str) -> None:
        """Copy the advisories collected for vuln_id into each platform's bucket."""
        root = tx.bucket(ADVISORY_DETAIL_BUCKET)
        if root is None:
            return
        cve_bucket = root.bucket(vuln_id)
        if cve_bucket is None:
            return
        try:
            self._save_advisories(tx, cve_bucket, [], vuln_id)
        except DBError as exc:
            raise DBError(f"unable to save advisories: {vuln_id}: {exc}") from exc

    def _save_advisories(
        self, tx: Transaction, bucket: Bucket, bkt_names: list[str], vuln_id: str
    ) -> None:
        for key, content in bucket.items():
            names = [*bkt_names, key]
            if content is None:
                child = bucket.bucket(key)
                if child is not None:
                    self._save_advisories(tx, child, names, vuln_id)
                continue
            detail = _loads(content, "/".join(names))
            if detail is not None and not isinstance(detail, dict):
                raise DBError(f"json unmarshal error: {'/'.join(names)}: not an object")
            try:
                self._put(tx, names, vuln_id, detail)
            except DBError as exc:
                raise DBError(f"database put error: {exc}") from exc

    def delete_advisory_detail_bucket(self) -> None:
        self._delete_bucket(ADVISORY_DETAIL_BUCKET)

    # -- data sources ----------------------------------------------------

    def put_data_source(self, tx: Transaction, bkt_name: str, source: DataSource) -> None:
        try:
            bucket = tx.create_bucket_if_not_exists(DATA_SOURCE_BUCKET)
        except StoreError as exc:
            raise DBError(f"failed to create bucket: {DATA_SOURCE_BUCKET}: {exc}") from exc
        encoded = _dumps(source)
        try:
            bucket.put(bkt_name, encoded)
        except StoreError as exc:
            raise DBError(f"failed to put data source: {bkt_name}: {exc}") from exc

    def _get_data_source(self, tx: Transaction, bkt_name: str) -> DataSource:
        bucket = tx.bucket(DATA_SOURCE_BUCKET)
        if bucket is None:
            return DataSource()
        content = bucket.get(bkt_name)
        if content is None:
            return DataSource()
        return _load_object(content, bkt_name, DataSource.from_dict)

    # -- Red Hat CPE -----------------------------------------------------

    def put_red_hat_repositories(
        self, tx: Transaction, repository: str, cpe_indices: Sequence[int]
    ) -> None:
        try:
            self._put(
                tx, [REDHAT_CPE_ROOT_BUCKET, REDHAT_REPO_BUCKET], repository, list(cpe_indices)
            )
        except DBError as exc:
            raise DBError(f"failed to put Red Hat repositories: {repository}: {exc}") from exc

    def put_red_hat_nvrs(self, tx: Transaction, nvr: str, cpe_indices: Sequence[int]) -> None:
        try:
            self._put(tx, [REDHAT_CPE_ROOT_BUCKET, REDHAT_NVR_BUCKET], nvr, list(cpe_indices))
        except DBError as exc:
            raise DBError(f"failed to put Red Hat NVRs: {nvr}: {exc}") from exc

    def put_red_hat_cpes(self, tx: Transaction, cpe_index: int, cpe: str) -> None:
        try:
            self._put(tx, [REDHAT_CPE_ROOT_BUCKET, REDHAT_CPE_BUCKET], str(cpe_index), cpe)
        except DBError as exc:
            raise DBError(f"failed to put Red Hat CPEs: {cpe_index} {cpe}: {exc}") from exc

    def red_hat_repo_to_cpes(self, repository: str) -> list[int]:
        return self._get_cpes(REDHAT_REPO_BUCKET, repository)

    def red_hat_nvr_to_cpes(self, nvr: str) -> list[int]:
        return self._get_cpes(REDHAT_NVR_BUCKET, nvr)

    def _get_cpes(self, bucket: str, key: str) -> list[int]:
        try:
            content = self._get([REDHAT_CPE_ROOT_BUCKET, bucket], key)
        except DBError as exc:
            raise DBError(f"failed to get CPEs: {bucket} {key}: {exc}") from exc
        if not content:
            return []
        data = _loads(content, key)
        if data is None:
            return []
        if not isinstance(data, list) or not all(
            isinstance(item, int) and not isinstance(item, bool) for item in data
        ):
            raise DBError(f"json unmarshal error: {key}: not a list of integers")
        return data

    # -- vulnerabilities -------------------------------------------------

    def put_vulnerability(self, tx: Transaction, vuln_id: str, vuln: Vulnerability) -> None:
        try:
            self._put(tx, [VULNERABILITY_BUCKET], vuln_id, vuln)
        except DBError as exc:
            raise DBError(f"failed to put severity: {vuln_id}: {exc}") from exc

    def get_vulnerability(self, vuln_id: str) -> Vulnerability:
        try:
            with _store().view() as tx:
                bucket = tx.bucket(VULNERABILITY_BUCKET)
                content = bucket.get(vuln_id) if bucket is not None else None
        except StoreError as exc:
            raise DBError(f"failed to get vulnerability: {vuln_id}: {exc}") from exc
        if content is None:
            raise DBError(f"failed to get vulnerability: no vulnerability details: {vuln_id}")
        try:
            return _load_object(content, vuln_id, Vulnerability.from_dict)
        except DBError as exc:
            raise DBError(f"failed to get vulnerability: {exc}") from exc

    def put_vulnerability_detail(
        self, tx: Transaction, vuln_id: str, source: SourceID, vuln: VulnerabilityDetail
    ) -> None:
        try:
            self._put(tx, [VULNERABILITY_DETAIL_BUCKET, vuln_id], str(source), vuln)
        except DBError as exc:
            raise DBError(
                f"failed to put vulnerability detail: {vuln_id} {source}: {exc}"
            ) from exc

    def get_vulnerability_detail(self, vuln_id: str) -> dict[SourceID, VulnerabilityDetail]:
        """Details of a vulnerability keyed by the source that reported them."""
        try:
            values = self._for_each([VULNERABILITY_DETAIL_BUCKET, vuln_id])
        except DBError as exc:
            raise DBError(f"unable to get vulnerability detail: {vuln_id}: {exc}") from exc
        return {
            source: _load_object(value.content, source, VulnerabilityDetail.from_dict)
            for source, value in values.items()
        }

    def delete_vulnerability_detail_bucket(self) -> None:
        self._delete_bucket(VULNERABILITY_DETAIL_BUCKET)

    # -- vulnerability IDs -----------------------------------------------

    def put_vulnerability_id(self, tx: Transaction, vuln_id: str) -> None:
        try:
            bucket = tx.create_bucket_if_not_exists(VULNERABILITY_ID_BUCKET)
            bucket.put(vuln_id, b"{}")
        except StoreError as exc:
            raise DBError(
                f"failed to create bucket: {VULNERABILITY_ID_BUCKET}: {vuln_id}: {exc}"
            ) from exc

    def for_each_vulnerability_id(self, fn: Callable[[Transaction, str], Any]) -> None:
        """Call fn with a writable transaction for every stored vulnerability ID."""

        def run(tx: Transaction) -> None:
            bucket = tx.bucket(VULNERABILITY_ID_BUCKET)
            if bucket is None:
                raise DBError(f"no such bucket: {VULNERABILITY_ID_BUCKET}")
            for vuln_id, _ in bucket.items():
                try:
                    fn(tx, vuln_id)
                except Exception as exc:
                    raise DBError(
                        f"for each error: something wrong: {vuln_id}: {exc}"
                    ) from exc

        try:
            _store().batch(run)
        except StoreError as exc:
            raise DBError(f"batch update error: {exc}") from exc

    def delete_vulnerability_id_bucket(self) -> None:
        self._delete_bucket(VULNERABILITY_ID_BUCKET)