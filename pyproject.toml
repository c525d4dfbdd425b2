[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vulnstore"
version = "0.1.0"
description = "Storage layer for a vulnerability advisory database: typed records, a nested-bucket key/value store and build metadata"
requires-python = ">=3.11"
keywords = [
    "vulnerability",
    "advisory",
    "cve",
    "security",
    "database",
    "key-value",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: Database",
    "Typing :: Typed",
]
dependencies = [
    "portalocker",
    "tqdm",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["vulnstore"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
