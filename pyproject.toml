[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "authpipe"
version = "0.1.0"
description = "External authorization pipeline (identity, metadata, authorization, response, callbacks) with WSGI endpoints for raw HTTP checks and OIDC discovery"
requires-python = ">=3.10"
dependencies = []
keywords = ["authorization", "authentication", "ext-authz", "oidc", "wsgi", "admission-review"]
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
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Security",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["authpipe"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
