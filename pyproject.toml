[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "skew"
version = "0.1.0"
description = "A small reliable-UDP game zone server"
requires-python = ">=3.10"
dependencies = []
keywords = ["game", "server", "udp", "reliable", "protocol"]
classifiers = [
    "Development Status :: 2 - Pre-Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Games/Entertainment",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
skew = "skew.server:main"

[tool.hatch.build.targets.wheel]
packages = ["skew"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
