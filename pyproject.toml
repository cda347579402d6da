[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pingkit"
version = "0.1.0"
description = "ICMP echo (ping) library and command-line tool with round-trip statistics"
requires-python = ">=3.10"
dependencies = []
keywords = ["ping", "icmp", "echo", "network", "latency", "monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
pingkit = "pingkit.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["pingkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
