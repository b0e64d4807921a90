[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mikrohosts"
version = "4.0.0"
description = "Turn hosts files into RouterOS static DNS scripts, served over HTTP."
requires-python = ">=3.10"
keywords = ["mikrotik", "routeros", "hosts", "dns", "adblock"]
classifiers = [
    "Development Status :: 5 - Production/Stable",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]
dependencies = [
    "pyyaml",
    "redis",
    "werkzeug",
    "httpx",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
mikrohosts = "mikrohosts.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["mikrohosts"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 110
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
