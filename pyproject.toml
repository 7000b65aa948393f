[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "opamp"
version = "0.1.0"
description = "OpAMP server, agent registry and agent supervision helpers for managing telemetry agents"
requires-python = ">=3.10"
keywords = ["opamp", "telemetry", "agent management", "websocket", "supervisor"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "aiohttp",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
opamp-server = "opamp.opampsrv:main"

[tool.hatch.build.targets.wheel]
packages = ["opamp"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
