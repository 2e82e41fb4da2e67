[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "narctrack"
version = "0.1.0"
description = "Track time spent on named activities with a small local HTTP daemon that writes periods to a CSV file."
requires-python = ">=3.10"
keywords = ["time tracking", "timesheet", "activity", "daemon", "csv"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business",
    "Topic :: Utilities",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
narc = "narctrack.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["narctrack"]

[tool.pytest.ini_options]
addopts = "-ra"
