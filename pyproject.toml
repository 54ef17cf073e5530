[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ipmiexporter"
version = "1.0.0"
description = "Prometheus exporter for IPMI sensor, chassis, BMC, DCMI, SEL and watchdog data collected through the FreeIPMI tools"
requires-python = ">=3.10"
keywords = ["ipmi", "freeipmi", "prometheus", "exporter", "bmc", "monitoring", "metrics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Environment :: Web Environment",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Hardware",
]
dependencies = [
    "pyyaml>=6.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
ipmi-exporter = "ipmiexporter.exporter:main"

[tool.hatch.build.targets.wheel]
packages = ["ipmiexporter"]

[tool.hatch.build.targets.sdist]
include = [
    "ipmiexporter",
    "tests",
    "pyproject.toml",
    "README.md",
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
