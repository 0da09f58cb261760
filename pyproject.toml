[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "smbwire"
version = "0.1.0"
description = "Building blocks for SMB2 clients: NTLMv2 authentication and message security, AES-CCM and wildcard matching"
requires-python = ">=3.10"
dependencies = [
    "pycryptodome",
]
keywords = ["smb", "smb2", "ntlm", "ntlmv2", "ccm", "aead", "wildcard", "cifs"]
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
    "Topic :: Security :: Cryptography",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["smbwire"]

[tool.hatch.build.targets.sdist]
include = ["smbwire", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
