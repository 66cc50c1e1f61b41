[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "omamori"
version = "1.0.0"
description = "Local blocking DNS server with a hosts-format block list, an LRU answer cache and upstream forwarding"
requires-python = ">=3.10"
dependencies = []
keywords = ["dns", "blocker", "hosts", "resolver", "cache", "ad-blocking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
omamori = "omamori.server:main"

[tool.hatch.build.targets.wheel]
packages = ["omamori"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
