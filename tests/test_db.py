import json
import os
from datetime import datetime, timezone

import pytest

from vulnstore.db import (
    Config,
    DBError,
    GetParams,
    Options,
    Value,
    close_db,
    db_path,
    init_db,
)
from vulnstore.kvstore import Store
from vulnstore.types import (
    Advisory,
    DataSource,
    Severity,
    Vulnerability,
    VulnerabilityDetail,
)


def j(obj):
    return json.dumps(obj).encode("utf-8")


def _fill(parent, tree):
    for name, value in tree.items():
        if isinstance(value, dict):
            _fill(parent.create_bucket_if_not_exists(name), value)
        else:
            parent.put(name, value)


def _init(db_dir, tree):
    path = db_path(db_dir)
    os.makedirs(db_dir, exist_ok=True)
    with Store(path) as store, store.update() as tx:
        _fill(tx, tree)
    init_db(db_dir)
    return path


def _read_json(keys):
    with Config().connection().view() as tx:
        bucket = tx.bucket(keys[0])
        for name in keys[1:-1]:
            assert bucket is not None
            bucket = bucket.bucket(name)
        assert bucket is not None
        raw = bucket.get(keys[-1])
    assert raw is not None
    return json.loads(raw)


@pytest.fixture(autouse=True)
def _close_after():
    yield
    close_db()


ADVISORY_DETAIL = {
    "advisory-detail": {
        "CVE-2019-14904": {
            "alpine 3.14": {"ansible": j({"FixedVersion": "2.9.3-r0"})},
            "debian 10": {"ansible": j({"FixedVersion": "2.3.4"})},
            "Red Hat": {
                "cpe:/o:redhat:enterprise_linux:6::server": {
                    "ansible": j({"FixedVersion": "3.4.5"})
                }
            },
        }
    }
}

SINGLE_BUCKET = {
    "GitHub Security Advisory Composer": {
        "symfony/symfony": {
            "CVE-2019-10909": j(
                {
                    "PatchedVersions": ["4.2.7", "3.4.26"],
                    "VulnerableVersions": [">= 4.2.0, < 4.2.7", ">= 3.0.0, < 3.4.26"],
                }
            ),
            "CVE-2019-18889": j(
                {
                    "PatchedVersions": ["4.3.8", "3.4.35"],
                    "VulnerableVersions": [">= 4.3.0, < 4.3.8", ">= 3.1.0, < 3.4.35"],
                }
            ),
        }
    }
}

MULTIPLE_BUCKETS = {
    "composer::GitHub Security Advisory Composer": {
        "symfony/symfony": {
            "CVE-2019-10909": j(
                {"PatchedVersions": ["4.2.7"], "VulnerableVersions": [">= 4.2.0, < 4.2.7"]}
            )
        }
    },
    "composer::php-security-advisories": {
        "symfony/symfony": {
            "CVE-2020-5275": j({"VulnerableVersions": [">= 4.4.0, < 4.4.7"]})
        }
    },
    "pip::GitHub Security Advisory pip": {
        "symfony/symfony": {"CVE-2000-0001": j({"FixedVersion": "1.0"})}
    },
}

DATA_SOURCE = {
    "data-source": {
        "composer::GitHub Security Advisory Composer": j(
            {
                "ID": "ghsa",
                "Name": "GitHub Security Advisory Composer",
                "URL": "https://github.com/advisories?query=type%%3Areviewed+ecosystem%%3Acomposer",
            }
        ),
        "composer::php-security-advisories": j(
            {
                "ID": "php-security-advisories",
                "Name": "PHP Security Advisories Database",
                "URL": "https://github.com/FriendsOfPHP/security-advisories",
            }
        ),
    }
}

OSPKG = {
    "Red Hat Enterprise Linux 8": {
        "bind": {
            "CVE-2018-5745": j({"FixedVersion": "32:9.11.4-26.P2.el8"}),
            "CVE-2020-8617": j({"FixedVersion": "32:9.11.13-5.el8_2"}),
        }
    }
}

REDHAT_CPE = {
    "Red Hat CPE": {
        "repository": {
            "rhel-lb-for-rhel-6-server-eus-debug-rpms": j([1, 2]),
            "broken": b"broken",
        }
    }
}


# -- save_advisory_details -------------------------------------------------


def test_save_advisory_details_happy_path(tmp_path):
    _init(tmp_path, ADVISORY_DETAIL)
    dbc = Config()
    dbc.batch_update(lambda tx: dbc.save_advisory_details(tx, "CVE-2019-14904"))

    assert _read_json(["alpine 3.14", "ansible", "CVE-2019-14904"]) == {
        "FixedVersion": "2.9.3-r0"
    }
    assert _read_json(["debian 10", "ansible", "CVE-2019-14904"]) == {"FixedVersion": "2.3.4"}
    assert _read_json(
        ["Red Hat", "cpe:/o:redhat:enterprise_linux:6::server", "ansible", "CVE-2019-14904"]
    ) == {"FixedVersion": "3.4.5"}


def test_save_advisory_details_missing_id(tmp_path):
    _init(tmp_path, ADVISORY_DETAIL)
    dbc = Config()
    dbc.batch_update(lambda tx: dbc.save_advisory_details(tx, "CVE-2019-9999"))
    with dbc.connection().view() as tx:
        assert tx.root_names() == ["advisory-detail"]


def test_save_advisory_details_broken_value(tmp_path):
    _init(tmp_path, {"advisory-detail": {"CVE-1": {"alpine 3.14": {"pkg": b"{broken"}}}})
    dbc = Config()
    with pytest.raises(DBError, match="json unmarshal error"):
        dbc.batch_update(lambda tx: dbc.save_advisory_details(tx, "CVE-1"))


# -- for_each_advisory -----------------------------------------------------


@pytest.mark.parametrize(
    "fixture, source, pkg_name, want",
    [
        (
            SINGLE_BUCKET,
            "GitHub Security Advisory Composer",
            "symfony/symfony",
            {
                "CVE-2019-10909": Advisory(
                    patched_versions=["4.2.7", "3.4.26"],
                    vulnerable_versions=[">= 4.2.0, < 4.2.7", ">= 3.0.0, < 3.4.26"],
                ),
                "CVE-2019-18889": Advisory(
                    patched_versions=["4.3.8", "3.4.35"],
                    vulnerable_versions=[">= 4.3.0, < 4.3.8", ">= 3.1.0, < 3.4.35"],
                ),
            },
        ),
        (
            MULTIPLE_BUCKETS,
            "composer::",
            "symfony/symfony",
            {
                "CVE-2019-10909": Advisory(
                    patched_versions=["4.2.7"], vulnerable_versions=[">= 4.2.0, < 4.2.7"]
                ),
                "CVE-2020-5275": Advisory(vulnerable_versions=[">= 4.4.0, < 4.4.7"]),
            },
        ),
        (SINGLE_BUCKET, "non-existent", "symfony/symfony", {}),
        (SINGLE_BUCKET, "GitHub Security Advisory Composer", "non-existent", {}),
    ],
    ids=["single bucket", "prefix scan", "non-existent bucket", "non-existent package"],
)
def test_for_each_advisory(tmp_path, fixture, source, pkg_name, want):
    _init(tmp_path, fixture)
    got = Config().for_each_advisory([source], pkg_name)
    assert set(got) == set(want)
    for vuln_id, value in got.items():
        assert Advisory.from_dict(json.loads(value.content)) == want[vuln_id]


def test_for_each_advisory_requires_nested_bucket(tmp_path):
    _init(tmp_path, SINGLE_BUCKET)
    with pytest.raises(DBError, match="bucket must be nested"):
        Config().for_each_advisory([], "symfony/symfony")


def test_for_each_advisory_carries_data_source(tmp_path):
    _init(tmp_path, {**MULTIPLE_BUCKETS, **DATA_SOURCE})
    got = Config().for_each_advisory(["composer::"], "symfony/symfony")
    assert got["CVE-2020-5275"] == Value(
        source=DataSource(
            id="php-security-advisories",
            name="PHP Security Advisories Database",
            url="https://github.com/FriendsOfPHP/security-advisories",
        ),
        content=j({"VulnerableVersions": [">= 4.4.0, < 4.4.7"]}),
    )


# -- get_advisories --------------------------------------------------------


def _by_id(advisories):
    return sorted(advisories, key=lambda adv: adv.vulnerability_id)


def test_get_advisories_os_package(tmp_path):
    _init(tmp_path, OSPKG)
    got = Config().get_advisories("Red Hat Enterprise Linux 8", "bind")
    assert _by_id(got) == [
        Advisory(vulnerability_id="CVE-2018-5745", fixed_version="32:9.11.4-26.P2.el8"),
        Advisory(vulnerability_id="CVE-2020-8617", fixed_version="32:9.11.13-5.el8_2"),
    ]


def test_get_advisories_library(tmp_path):
    _init(tmp_path, SINGLE_BUCKET)
    got = Config().get_advisories("GitHub Security Advisory Composer", "symfony/symfony")
    assert _by_id(got) == [
        Advisory(
            vulnerability_id="CVE-2019-10909",
            patched_versions=["4.2.7", "3.4.26"],
            vulnerable_versions=[">= 4.2.0, < 4.2.7", ">= 3.0.0, < 3.4.26"],
        ),
        Advisory(
            vulnerability_id="CVE-2019-18889",
            patched_versions=["4.3.8", "3.4.35"],
            vulnerable_versions=[">= 4.3.0, < 4.3.8", ">= 3.1.0, < 3.4.35"],
        ),
    ]


def test_get_advisories_prefix_scan(tmp_path):
    _init(tmp_path, {**MULTIPLE_BUCKETS, **DATA_SOURCE})
    got = Config().get_advisories("composer::", "symfony/symfony")
    assert _by_id(got) == [
        Advisory(
            vulnerability_id="CVE-2019-10909",
            patched_versions=["4.2.7"],
            vulnerable_versions=[">= 4.2.0, < 4.2.7"],
            data_source=DataSource(
                id="ghsa",
                name="GitHub Security Advisory Composer",
                url="https://github.com/advisories?query=type%%3Areviewed+ecosystem%%3Acomposer",
            ),
        ),
        Advisory(
            vulnerability_id="CVE-2020-5275",
            vulnerable_versions=[">= 4.4.0, < 4.4.7"],
            data_source=DataSource(
                id="php-security-advisories",
                name="PHP Security Advisories Database",
                url="https://github.com/FriendsOfPHP/security-advisories",
            ),
        ),
    ]


@pytest.mark.parametrize(
    "source, pkg_name",
    [
        ("non-existent", "symfony/symfony"),
        ("GitHub Security Advisory Composer", "non-existent"),
    ],
)
def test_get_advisories_missing(tmp_path, source, pkg_name):
    _init(tmp_path, SINGLE_BUCKET)
    assert Config().get_advisories(source, pkg_name) == []


def test_get_advisories_broken_value(tmp_path):
    _init(tmp_path, {"alpine 3.12": {"curl": {"CVE-2019-0001": b"[broken"}}})
    with pytest.raises(DBError, match="json unmarshal error"):
        Config().get_advisories("alpine 3.12", "curl")


def test_put_data_source_and_advisory_round_trip(tmp_path):
    init_db(tmp_path)
    dbc = Config()
    source = DataSource(id="alpine", name="Alpine Secdb", url="https://secdb.example.com/")

    def fill(tx):
        dbc.put_data_source(tx, "alpine 3.12", source)
        dbc.put_advisory(
            tx, ["alpine 3.12", "ansible"], "CVE-2019-14904", Advisory(fixed_version="2.9.3-r0")
        )

    dbc.batch_update(fill)
    assert dbc.get_advisories("alpine 3.12", "ansible") == [
        Advisory(vulnerability_id="CVE-2019-14904", fixed_version="2.9.3-r0", data_source=source)
    ]


def test_put_advisory_empty_bucket_names(tmp_path):
    init_db(tmp_path)
    dbc = Config()
    with pytest.raises(DBError, match="empty bucket name"):
        dbc.batch_update(lambda tx: dbc.put_advisory(tx, [], "CVE-1", Advisory()))


def test_put_advisory_detail_location(tmp_path):
    init_db(tmp_path)
    dbc = Config()
    dbc.batch_update(
        lambda tx: dbc.put_advisory_detail(
            tx, "CVE-1", "openssl", ["debian 10"], Advisory(fixed_version="1.1")
        )
    )
    assert _read_json(["advisory-detail", "CVE-1", "debian 10", "openssl"]) == {
        "FixedVersion": "1.1"
    }


# -- init ------------------------------------------------------------------


def _make_normal_db(db_dir):
    Store(db_path(db_dir)).close()


def test_init_normal_db(tmp_path):
    _make_normal_db(tmp_path)
    init_db(tmp_path)
    assert Config().connection().path == db_path(tmp_path)


def test_init_broken_db(tmp_path):
    with open(db_path(tmp_path), "wb") as file:
        file.write(b"this is not a database")
    with pytest.raises(DBError, match="db corrupted"):
        init_db(tmp_path)
    assert not os.path.exists(db_path(tmp_path))


def test_init_no_db(tmp_path):
    db_dir = tmp_path / "fresh"
    init_db(db_dir)
    assert os.path.isfile(db_path(db_dir))
    assert Config().connection().path == db_path(db_dir)


def test_init_read_only_with_existing_db(tmp_path):
    _make_normal_db(tmp_path)
    init_db(tmp_path, Options(read_only=True))
    assert Config().connection().read_only is True


def test_multiple_init_without_read_only_fails(tmp_path):
    _make_normal_db(tmp_path)
    init_db(tmp_path, Options(timeout=0.2))
    first = Config().connection()
    try:
        with pytest.raises(DBError, match="may be in use by another process"):
            init_db(tmp_path, Options(timeout=0.2))
    finally:
        first.close()


def test_multiple_init_with_read_only_succeeds(tmp_path):
    _make_normal_db(tmp_path)
    init_db(tmp_path, Options(read_only=True, timeout=0.2))
    first = Config().connection()
    try:
        init_db(tmp_path, Options(read_only=True, timeout=0.2))
        second = Config().connection()
        assert second is not first and second.read_only
    finally:
        first.close()


def test_db_path():
    assert db_path("some/dir") == os.path.join("some/dir", "vulnstore.db")


def test_close_without_db_and_use_after_close(tmp_path):
    close_db()
    with pytest.raises(DBError, match="not initialized"):
        Config().get_vulnerability("CVE-1")


def test_get_params_defaults():
    params = GetParams(release="3.12", pkg_name="curl")
    assert (params.release, params.pkg_name, params.arch) == ("3.12", "curl", "")


# -- Red Hat CPE -----------------------------------------------------------


@pytest.mark.parametrize(
    "repository, want",
    [
        ("rhel-lb-for-rhel-6-server-eus-debug-rpms", [1, 2]),
        ("unknown", []),
    ],
    ids=["happy path", "unknown cpe"],
)
def test_red_hat_repo_to_cpes(tmp_path, repository, want):
    _init(tmp_path, REDHAT_CPE)
    assert Config().red_hat_repo_to_cpes(repository) == want


def test_red_hat_repo_to_cpes_broken_value(tmp_path):
    _init(tmp_path, REDHAT_CPE)
    with pytest.raises(DBError, match="json unmarshal error"):
        Config().red_hat_repo_to_cpes("broken")


def test_red_hat_round_trip(tmp_path):
    init_db(tmp_path)
    dbc = Config()

    def fill(tx):
        dbc.put_red_hat_repositories(tx, "repo-a", [3, 4])
        dbc.put_red_hat_nvrs(tx, "bind-9.11-1.el8", [5])
        dbc.put_red_hat_cpes(tx, 5, "cpe:/o:redhat:enterprise_linux:8")

    dbc.batch_update(fill)
    assert dbc.red_hat_repo_to_cpes("repo-a") == [3, 4]
    assert dbc.red_hat_nvr_to_cpes("bind-9.11-1.el8") == [5]
    assert _read_json(["Red Hat CPE", "cpe", "5"]) == "cpe:/o:redhat:enterprise_linux:8"


# -- vulnerabilities -------------------------------------------------------


def test_vulnerability_round_trip(tmp_path):
    init_db(tmp_path)
    dbc = Config()
    vuln = Vulnerability(
        title="python-jinja2: str.format_map allows sandbox escape",
        severity="HIGH",
        vendor_severity={"nvd": Severity.HIGH, "redhat": Severity.CRITICAL},
        published_date=datetime(2019, 4, 7, 0, 29, tzinfo=timezone.utc),
    )
    dbc.batch_update(lambda tx: dbc.put_vulnerability(tx, "CVE-2019-10906", vuln))
    assert dbc.get_vulnerability("CVE-2019-10906") == vuln


def test_get_vulnerability_missing(tmp_path):
    init_db(tmp_path)
    with pytest.raises(DBError, match="no vulnerability details"):
        Config().get_vulnerability("CVE-0000-0000")


def test_vulnerability_detail_round_trip_and_delete(tmp_path):
    init_db(tmp_path)
    dbc = Config()
    alma = VulnerabilityDetail(severity=Severity.MEDIUM, title="Moderate: update")
    nvd = VulnerabilityDetail(cvss_score_v3=9.8, references=["https://example.com/a"])

    def fill(tx):
        dbc.put_vulnerability_detail(tx, "CVE-1", "alma", alma)
        dbc.put_vulnerability_detail(tx, "CVE-1", "nvd", nvd)

    dbc.batch_update(fill)
    assert dbc.get_vulnerability_detail("CVE-1") == {"alma": alma, "nvd": nvd}
    assert dbc.get_vulnerability_detail("CVE-2") == {}

    dbc.delete_vulnerability_detail_bucket()
    assert dbc.get_vulnerability_detail("CVE-1") == {}


def test_delete_missing_bucket(tmp_path):
    init_db(tmp_path)
    with pytest.raises(DBError, match="failed to delete bucket"):
        Config().delete_advisory_detail_bucket()


# -- vulnerability IDs -----------------------------------------------------


def test_for_each_vulnerability_id(tmp_path):
    init_db(tmp_path)
    dbc = Config()

    def fill(tx):
        for vuln_id in ("CVE-3", "CVE-1", "CVE-2"):
            dbc.put_vulnerability_id(tx, vuln_id)

    dbc.batch_update(fill)
    seen = []
    dbc.for_each_vulnerability_id(lambda tx, vuln_id: seen.append(vuln_id))
    assert seen == ["CVE-1", "CVE-2", "CVE-3"]
    assert _read_json(["vulnerability-id", "CVE-1"]) == {}

    dbc.delete_vulnerability_id_bucket()
    with pytest.raises(DBError, match="no such bucket"):
        dbc.for_each_vulnerability_id(lambda tx, vuln_id: None)


def test_for_each_vulnerability_id_saves_advisories(tmp_path):
    _init(tmp_path, ADVISORY_DETAIL)
    dbc = Config()
    dbc.batch_update(lambda tx: dbc.put_vulnerability_id(tx, "CVE-2019-14904"))
    dbc.for_each_vulnerability_id(dbc.save_advisory_details)
    assert _read_json(["debian 10", "ansible", "CVE-2019-14904"]) == {"FixedVersion": "2.3.4"}


def test_for_each_vulnerability_id_callback_error(tmp_path):
    init_db(tmp_path)
    dbc = Config()
    dbc.batch_update(lambda tx: dbc.put_vulnerability_id(tx, "CVE-1"))

    def fail(tx, vuln_id):
        raise ValueError("boom")

    with pytest.raises(DBError, match="something wrong"):
        dbc.for_each_vulnerability_id(fail)