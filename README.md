# vulnstore

`vulnstore` is the storage layer for a vulnerability advisory database. It keeps
advisories, vulnerability details and data-source records in a single
file-backed store of nested buckets, and records in `metadata.json` when the
database was built and when it should next be refreshed.

## Modules

- **`vulnstore.types`**: the records `Advisory`, `Advisories`, `Vulnerability`,
  `VulnerabilityDetail`, `DataSource`, `CVSS`, `CVSSVector`, `AdvisoryDetail`
  and `LastUpdated`, with the `Severity` and `Status` integer enumerations.
  The stored records convert to and from JSON-ready dictionaries with
  `to_dict()` and `from_dict()`; empty fields are left out, and an advisory's
  status is stored as an integer. `new_severity("HIGH")` returns a `Severity`
  and raises `ValueError` for an unknown name; `new_status()` returns
  `Status.UNKNOWN` for an unknown name; `compare_severity_string(a, b)` is
  positive when `b` ranks above `a`.
- **`vulnstore.ecosystem`**: the `Ecosystem` string enumeration of language and
  operating-system ecosystem identifiers (`Ecosystem.PIP == "pip"`,
  `Ecosystem.KUBERNETES == "k8s"`, ...).
- **`vulnstore.kvstore`**: `Store`, a file of named buckets nested to any
  depth. Read with `view()`, write with `update()` (committed on normal exit,
  discarded on an exception) or `batch(fn)`. Buckets offer `get`, `put`,
  `bucket`, `create_bucket_if_not_exists` and `items()` in byte order of the
  names. The file is locked while open (shared when `read_only=True`,
  exclusive otherwise); when the lock cannot be taken within `timeout`
  seconds, `StoreTimeoutError` is raised. A file that is not a valid store
  raises `StoreCorruptedError`.
- **`vulnstore.db`**: `init_db(db_dir, options)` opens (and creates)
  `vulnstore.db` in `db_dir`, `close_db()` closes it, and `Config` provides
  the database operations: advisories, advisory details, vulnerabilities,
  vulnerability details, vulnerability IDs, data sources and Red Hat
  repository/NVR to CPE mappings. Failures raise `DBError`. A corrupted
  database file is removed by `init_db` before the error is raised.
- **`vulnstore.metadata`**: `Metadata` and `MetadataClient`, which read,
  write and delete `metadata.json` in a database directory; failures raise
  `MetadataError`.
- **`vulnstore.log`**: `with_prefix(prefix)` returns a logger adapter that
  writes `"[prefix] message"`; `set_logger()` and `get_logger()` replace and
  return the default logger.
- **`vulnstore.utils.files`**: `file_walk(root, walk_fn)` calls `walk_fn`
  with an open binary file and its path for every non-empty file under
  `root`, in sorted order; `exists`, `load_json_file`, `must_time_parse`
  (RFC 3339), `cache_dir()` and `construct_version(epoch, version, release)`.
- **`vulnstore.utils.intutil`** and **`vulnstore.utils.strutil`**: sorting,
  de-duplicating and merging lists, and `is_int`.
- **`vulnstore.utils.progress`**: `Spinner` and `ProgressBar`, both usable as
  context managers; `set_quiet(True)` silences those created afterwards.
- **`vulnstore.dbtest`**: `load_fixtures`, `init_test_db`, `get_value`,
  `assert_json_eq`, `assert_no_key` and `assert_no_bucket` for tests that
  work against a database file.

## Reading advisories

```python
from vulnstore.db import Config, close_db, init_db

init_db("out")
try:
    for advisory in Config().get_advisories("alpine 3.12", "ansible"):
        print(advisory.vulnerability_id, advisory.fixed_version)
finally:
    close_db()
```

A source name that contains `::`, such as `"composer::"`, is treated as a
prefix: advisories are collected from every root bucket whose name starts with
it, and each result carries the `DataSource` recorded for its bucket.

## Writing inside a transaction

The function passed to `batch_update()` receives the open writable
transaction; all its writes are committed together.

```python
from vulnstore.db import Config
from vulnstore.types import Advisory, DataSource

dbc = Config()

def save(tx):
    dbc.put_data_source(tx, "alpine 3.12", DataSource(id="alpine", name="Alpine Secdb"))
    dbc.put_advisory_detail(tx, "CVE-2019-14904", "ansible", ["alpine 3.12"],
                            Advisory(fixed_version="2.9.3-r0"))
    dbc.put_vulnerability_id(tx, "CVE-2019-14904")

dbc.batch_update(save)
```

`for_each_vulnerability_id(fn)` then calls `fn(tx, vuln_id)` for every stored
ID, and `save_advisory_details(tx, vuln_id)` copies the advisory details of
that ID into the buckets of each platform (`"alpine 3.12" / "ansible" /
"CVE-2019-14904"`). The working buckets can afterwards be dropped with
`delete_advisory_detail_bucket()`, `delete_vulnerability_detail_bucket()` and
`delete_vulnerability_id_bucket()`.

## Small helpers

```python
from vulnstore.types import compare_severity_string, new_severity
from vulnstore.utils.files import construct_version
from vulnstore.utils.intutil import unique

construct_version("1", "2.14.5", "1.59.amzn1")   # "1:2.14.5-1.59.amzn1"
construct_version("0", "2.9.3", "r0")            # "2.9.3-r0"
unique([1, 3, 1, 2, 3])                          # [1, 2, 3]
new_severity("CRITICAL")                         # Severity.CRITICAL
compare_severity_string("LOW", "HIGH")           # 2
```

## What this package does not do

It has no command-line tool and does not download or parse advisory feeds
from distributions or language ecosystems. It stores and reads the records;
filling the database from advisory files, and merging vulnerability details
into the final `vulnerability` bucket, is left to the code that uses it.

## Requirements

Python 3.11 or later. Runtime dependencies are `portalocker`, for locking the
store file, and `tqdm`, for progress bars. Tests use `pytest`
(`pip install vulnstore[test]`).