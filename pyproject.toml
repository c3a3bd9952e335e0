[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mcpstream"
version = "0.1.0"
description = "Streamable HTTP transport for Model Context Protocol servers, as an ASGI application"
requires-python = ">=3.11"
dependencies = [
    "httpx",
]
keywords = ["mcp", "model-context-protocol", "asgi", "sse", "json-rpc", "oauth"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["mcpstream"]

[tool.pytest.ini_options]
addopts = "-ra"
