[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ldapcore"
version = "0.1.0"
description = "LDAP v3 building blocks: BER packets, result errors, DN parsing, search filters, a multiplexed connection and DIGEST-MD5 helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["ldap", "ber", "asn1", "directory", "dn", "filter", "sasl", "digest-md5"]
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
    "Topic :: System :: Systems Administration :: Authentication/Directory :: LDAP",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ldapcore"]

[tool.hatch.build.targets.sdist]
include = ["ldapcore", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
