[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "revtun"
version = "0.25.1"
description = "Building blocks for a reverse proxy: connections, listeners, virtual-host routing and traffic counters"
requires-python = ">=3.10"
dependencies = []
keywords = ["reverse-proxy", "tunnel", "vhost", "sni", "networking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["revtun"]

[tool.pytest.ini_options]
addopts = "-ra"
