[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "picohttps"
version = "0.1.0"
description = "Socket-level building blocks for HTTP/HTTPS services: header parsing, WebSocket framing, an MQTT client codec, TCP/TLS sessions and listeners, and UDP trace logging"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "http",
    "https",
    "tls",
    "websocket",
    "mqtt",
    "listener",
    "logging",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Communications",
    "Topic :: System :: Logging",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["picohttps"]

[tool.hatch.build.targets.sdist]
include = ["picohttps", "tests", "README.md", "pyproject.toml"]

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
