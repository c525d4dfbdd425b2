"""Vulnerability, advisory and data-source records and their stored JSON form."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from vulnstore.utils.files import _format_time, must_time_parse

SourceID = str

STATUSES = (
    "unknown",
    "not_affected",
    "affected",
    "fixed",
    "under_investigation",
    "will_not_fix",
    "fix_deferred",
    "end_of_life",
)
SEVERITY_NAMES = ("UNKNOWN", "LOW", "MEDIUM", "HIGH", "CRITICAL")


class Status(enum.IntEnum):
    """Fix status of a package for an advisory."""

    UNKNOWN = 0
    NOT_AFFECTED = 1
    AFFECTED = 2
    FIXED = 3
    UNDER_INVESTIGATION = 4
    WILL_NOT_FIX = 5
    FIX_DEFERRED = 6
    END_OF_LIFE = 7

    def __str__(self) -> str:
        return STATUSES[self.value]


def new_status(status: str) -> Status:
    """Return the status with the given name, or UNKNOWN."""
    return Status(STATUSES.index(status)) if status in STATUSES else Status.UNKNOWN


class Severity(enum.IntEnum):
    """Severity of a vulnerability."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __str__(self) -> str:
        return SEVERITY_NAMES[self.value]


def new_severity(severity: str) -> Severity:
    """Return the severity with the given upper-case name."""
    if severity not in SEVERITY_NAMES:
        raise ValueError(f"unknown severity: {severity}")
    return Severity(SEVERITY_NAMES.index(severity))


def compare_severity_string(sev1: str, sev2: str) -> int:
    """Positive when sev2 is more severe than sev1; unknown names count as UNKNOWN."""

    def level(name: str) -> int:
        return SEVERITY_NAMES.index(name) if name in SEVERITY_NAMES else 0

    return level(sev2) - level(sev1)


def _time_or_none(value: datetime | None) -> str | None:
    return _format_time(value) if value else None


def _parse_time(value: Any) -> datetime | None:
    return None if value is None else must_time_parse(value)


def _omit_empty(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value}


def _strings(data: dict[str, Any], key: str) -> list[str]:
    return list(data.get(key) or [])


def _severity(data: dict[str, Any], key: str) -> Severity:
    return Severity(int(data.get(key, 0)))


@dataclass
class CVSS:
    """CVSS vectors and scores from one source."""

    v2_vector: str = ""
    v3_vector: str = ""
    v40_vector: str = ""
    v2_score: float = 0.0
    v3_score: float = 0.0
    v40_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return _omit_empty(
            V2Vector=self.v2_vector,
            V3Vector=self.v3_vector,
            V40Vector=self.v40_vector,
            V2Score=self.v2_score,
            V3Score=self.v3_score,
            V40Score=self.v40_score,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CVSS:
        return cls(
            v2_vector=data.get("V2Vector", ""),
            v3_vector=data.get("V3Vector", ""),
            v40_vector=data.get("V40Vector", ""),
            v2_score=float(data.get("V2Score", 0.0)),
            v3_score=float(data.get("V3Score", 0.0)),
            v40_score=float(data.get("V40Score", 0.0)),
        )


@dataclass
class CVSSVector:
    """CVSS v2 and v3 vector strings."""

    v2: str = ""
    v3: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _omit_empty(v2=self.v2, v3=self.v3)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CVSSVector:
        return cls(v2=data.get("v2", ""), v3=data.get("v3", ""))


@dataclass
class DataSource:
    """Where an advisory comes from."""

    id: SourceID = ""
    name: str = ""
    url: str = ""
    base_id: SourceID = ""

    def to_dict(self) -> dict[str, Any]:
        return _omit_empty(ID=self.id, Name=self.name, URL=self.url, BaseID=self.base_id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DataSource:
        return cls(
            id=data.get("ID", ""),
            name=data.get("Name", ""),
            url=data.get("URL", ""),
            base_id=data.get("BaseID", ""),
        )

    def is_empty(self) -> bool:
        return not (self.id or self.name or self.url or self.base_id)


@dataclass
class Advisory:
    """Affected and fixed versions of one package for one vulnerability."""

    vulnerability_id: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    oses: list[str] = field(default_factory=list)
    arches: list[str] = field(default_factory=list)
    status: Status = Status.UNKNOWN
    severity: Severity = Severity.UNKNOWN
    fixed_version: str = ""
    affected_version: str = ""
    vulnerable_versions: list[str] = field(default_factory=list)
    patched_versions: list[str] = field(default_factory=list)
    unaffected_versions: list[str] = field(default_factory=list)
    data_source: DataSource | None = None
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Stored form; the status is kept as an integer."""
        data = _omit_empty(
            VulnerabilityID=self.vulnerability_id,
            VendorIDs=list(self.vendor_ids),
            OSes=list(self.oses),
            Arches=list(self.arches),
            Severity=int(self.severity),
            FixedVersion=self.fixed_version,
            AffectedVersion=self.affected_version,
            VulnerableVersions=list(self.vulnerable_versions),
            PatchedVersions=list(self.patched_versions),
            UnaffectedVersions=list(self.unaffected_versions),
            Status=int(self.status),
        )
        if self.data_source is not None:
            data["DataSource"] = self.data_source.to_dict()
        if self.custom is not None:
            data["Custom"] = self.custom
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Advisory:
        source = data.get("DataSource")
        raw_status = data.get("Status", 0)
        try:
            status = Status(int(raw_status))
        except (TypeError, ValueError):
            status = Status.UNKNOWN
        return cls(
            vulnerability_id=data.get("VulnerabilityID", ""),
            vendor_ids=_strings(data, "VendorIDs"),
            oses=_strings(data, "OSes"),
            arches=_strings(data, "Arches"),
            status=status,
            severity=_severity(data, "Severity"),
            fixed_version=data.get("FixedVersion", ""),
            affected_version=data.get("AffectedVersion", ""),
            vulnerable_versions=_strings(data, "VulnerableVersions"),
            patched_versions=_strings(data, "PatchedVersions"),
            unaffected_versions=_strings(data, "UnaffectedVersions"),
            data_source=DataSource.from_dict(source) if source is not None else None,
            custom=data.get("Custom"),
        )


@dataclass
class Advisories:
    """Advisories of one package kept per architecture or vendor ID."""

    fixed_version: str = ""
    entries: list[Advisory] = field(default_factory=list)
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = _omit_empty(
            FixedVersion=self.fixed_version,
            Entries=[entry.to_dict() for entry in self.entries],
        )
        if self.custom is not None:
            data["Custom"] = self.custom
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Advisories:
        return cls(
            fixed_version=data.get("FixedVersion", ""),
            entries=[Advisory.from_dict(entry) for entry in data.get("Entries") or []],
            custom=data.get("Custom"),
        )


@dataclass
class VulnerabilityDetail:
    """Details of a vulnerability as reported by one source."""

    id: str = ""
    cvss_score: float = 0.0
    cvss_vector: str = ""
    cvss_score_v3: float = 0.0
    cvss_vector_v3: str = ""
    cvss_score_v40: float = 0.0
    cvss_vector_v40: str = ""
    severity: Severity = Severity.UNKNOWN
    severity_v3: Severity = Severity.UNKNOWN
    severity_v40: Severity = Severity.UNKNOWN
    cwe_ids: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    title: str = ""
    description: str = ""
    published_date: datetime | None = None
    last_modified_date: datetime | None = None
    status: str = ""  # not stored

    def to_dict(self) -> dict[str, Any]:
        return _omit_empty(
            ID=self.id,
            CvssScore=self.cvss_score,
            CvssVector=self.cvss_vector,
            CvssScoreV3=self.cvss_score_v3,
            CvssVectorV3=self.cvss_vector_v3,
            CvssScoreV40=self.cvss_score_v40,
            CvssVectorV40=self.cvss_vector_v40,
            Severity=int(self.severity),
            SeverityV3=int(self.severity_v3),
            SeverityV40=int(self.severity_v40),
            CweIDs=list(self.cwe_ids),
            References=list(self.references),
            Title=self.title,
            Description=self.description,
            PublishedDate=_time_or_none(self.published_date),
            LastModifiedDate=_time_or_none(self.last_modified_date),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VulnerabilityDetail:
        return cls(
            id=data.get("ID", ""),
            cvss_score=float(data.get("CvssScore", 0.0)),
            cvss_vector=data.get("CvssVector", ""),
            cvss_score_v3=float(data.get("CvssScoreV3", 0.0)),
            cvss_vector_v3=data.get("CvssVectorV3", ""),
            cvss_score_v40=float(data.get("CvssScoreV40", 0.0)),
            cvss_vector_v40=data.get("CvssVectorV40", ""),
            severity=_severity(data, "Severity"),
            severity_v3=_severity(data, "SeverityV3"),
            severity_v40=_severity(data, "SeverityV40"),
            cwe_ids=_strings(data, "CweIDs"),
            references=_strings(data, "References"),
            title=data.get("Title", ""),
            description=data.get("Description", ""),
            published_date=_parse_time(data.get("PublishedDate")),
            last_modified_date=_parse_time(data.get("LastModifiedDate")),
        )


@dataclass
class AdvisoryDetail:
    """An advisory item bound to a platform and package."""

    platform_name: str = ""
    package_name: str = ""
    advisory_item: Any = None


@dataclass
class Vulnerability:
    """Normalized vulnerability record merged from all sources."""

    title: str = ""
    description: str = ""
    severity: str = ""
    cwe_ids: list[str] = field(default_factory=list)
    vendor_severity: dict[SourceID, Severity] = field(default_factory=dict)
    cvss: dict[SourceID, CVSS] = field(default_factory=dict)
    references: list[str] = field(default_factory=list)
    published_date: datetime | None = None
    last_modified_date: datetime | None = None
    custom: Any = None

    def to_dict(self) -> dict[str, Any]:
        data = _omit_empty(
            Title=self.title,
            Description=self.description,
            Severity=self.severity,
            CweIDs=list(self.cwe_ids),
            VendorSeverity={src: int(sev) for src, sev in sorted(self.vendor_severity.items())},
            CVSS={src: cvss.to_dict() for src, cvss in sorted(self.cvss.items())},
            References=list(self.references),
            PublishedDate=_time_or_none(self.published_date),
            LastModifiedDate=_time_or_none(self.last_modified_date),
        )
        if self.custom is not None:
            data["Custom"] = self.custom
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Vulnerability:
        return cls(
            title=data.get("Title", ""),
            description=data.get("Description", ""),
            severity=data.get("Severity", ""),
            cwe_ids=_strings(data, "CweIDs"),
            vendor_severity={
                src: Severity(int(sev)) for src, sev in (data.get("VendorSeverity") or {}).items()
            },
            cvss={src: CVSS.from_dict(value) for src, value in (data.get("CVSS") or {}).items()},
            references=_strings(data, "References"),
            published_date=_parse_time(data.get("PublishedDate")),
            last_modified_date=_parse_time(data.get("LastModifiedDate")),
            custom=data.get("Custom"),
        )


@dataclass
class LastUpdated:
    """Time of the last update."""

    date: datetime | None = None