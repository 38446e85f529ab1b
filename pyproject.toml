[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "backplane_tools"
version = "0.1.0"
description = "Helpers for clusters reached through a backplane API: kubeconfig handling, connectivity checks, PagerDuty and Jira lookups, and a monitoring proxy."
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "backplane",
    "openshift",
    "kubeconfig",
    "pagerduty",
    "jira",
    "sre",
    "monitoring",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["backplane_tools"]

[tool.hatch.build.targets.sdist]
include = [
    "backplane_tools",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
