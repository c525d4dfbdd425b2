"""Stable identifiers of package ecosystems."""

import enum


@enum.unique
class Ecosystem(enum.StrEnum):
    """Ecosystem slug."""

    UNKNOWN = "unknown"

    # Language ecosystems
    NPM = "npm"
    COMPOSER = "composer"
    PIP = "pip"
    RUBYGEMS = "rubygems"
    CARGO = "cargo"
    JULIA = "julia"
    NUGET = "nuget"
    MAVEN = "maven"
    GO = "go"
    CONAN = "conan"
    ERLANG = "erlang"
    PUB = "pub"
    SWIFT = "swift"
    COCOAPODS = "cocoapods"
    BITNAMI = "bitnami"
    KUBERNETES = "k8s"

    # OS ecosystems
    ALPINE = "alpine"
    REDHAT = "redhat"
    DEBIAN = "debian"
    UBUNTU = "ubuntu"
    CENTOS = "centos"
    ROCKY = "rocky"
    FEDORA = "fedora"
    AMAZON_LINUX = "amazon"
    ORACLE_LINUX = "oracle"
    SUSE = "suse"
    ARCH_LINUX = "archlinux"
    ALMA_LINUX = "alma"
    AZURE_LINUX = "azure-linux"
    CBL_MARINER = "cbl-mariner"
    PHOTON_OS = "photon"
    WOLFI = "wolfi"
    CHAINGUARD = "chainguard"
    ECHO = "echo"
    MINIMOS = "minimos"
    SEAL = "seal"