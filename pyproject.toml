[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "smithagent"
version = "0.2.23"
description = "Building blocks of a fleet management agent: configuration, registration, health checks, downloads and package updates."
requires-python = ">=3.11"
keywords = ["fleet", "agent", "device management", "ota", "debian", "updater"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "httpx",
    "tomli-w",
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "respx",
]

[tool.hatch.build.targets.wheel]
packages = ["smithagent"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
