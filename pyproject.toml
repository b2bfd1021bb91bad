[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ngmonitoring"
version = "0.1.0"
description = "Monitoring server core: TOML configuration, SQLite document store and an HTTP configuration service"
requires-python = ">=3.11"
dependencies = [
    "psutil",
]
keywords = ["monitoring", "profiling", "sqlite", "configuration", "http", "wsgi"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
ng-monitoring-server = "ngmonitoring.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["ngmonitoring"]

[tool.pytest.ini_options]
addopts = "-ra"
