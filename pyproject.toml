[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pelzkeys"
version = "0.1.0"
description = "Key service tooling: RFC 3394 AES key wrap, key and server tables, and a named-pipe command client"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["key-management", "aes", "keywrap", "rfc3394", "named-pipe"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
pelz = "pelzkeys.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["pelzkeys"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
