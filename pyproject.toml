[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kaddht"
version = "0.1.0"
description = "Kademlia DHT building blocks: network size estimation, optimistic provide, a crawl routing table, a stream-reusing message sender and loggable keys."
requires-python = ">=3.10"
keywords = ["kademlia", "dht", "p2p", "routing", "distributed-hash-table"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
]
dependencies = [
    "scipy",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["kaddht"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
