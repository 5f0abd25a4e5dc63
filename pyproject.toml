[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vsdb"
version = "3.0.0"
description = "Disk-backed raw key-value maps, a paged slot index and a radix-16 trie node codec"
requires-python = ">=3.10"
keywords = ["database", "key-value", "index", "slot", "trie", "storage"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "sortedcontainers",
    "pycryptodome",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vsdb"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
