[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ovscache"
version = "0.1.0"
description = "An in-memory, indexed row cache for OVSDB clients and servers, driven by update notifications"
requires-python = ">=3.10"
dependencies = []
keywords = ["ovsdb", "openvswitch", "cache", "database", "rfc7047"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ovscache"]

[tool.pytest.ini_options]
addopts = "-ra"
