[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hycore"
version = "0.1.0"
description = "Core building blocks of a QUIC-based proxy client: wire protocol, UDP fragmentation and sessions, handshake handling and congestion-control components."
requires-python = ">=3.10"
dependencies = []
keywords = ["proxy", "quic", "udp", "congestion-control", "bbr", "protocol"]
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
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["hycore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
