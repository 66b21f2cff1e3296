[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vrstore"
version = "0.1.0"
description = "Viewstamped Replication and an optimistic-concurrency transactional key-value store"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "viewstamped-replication",
    "consensus",
    "replication",
    "occ",
    "transactions",
    "key-value",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vrstore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
