[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "appbuilder"
version = "3.5.10"
description = "Helper toolkit for packaging desktop applications: block maps, downloads, node module discovery, native rebuilds and archive handling"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = [
    "packaging",
    "blockmap",
    "differential-update",
    "node-modules",
    "electron",
    "download",
    "build",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Topic :: System :: Archiving :: Packaging",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
app-builder = "appbuilder.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["appbuilder"]

[tool.hatch.build.targets.sdist]
include = [
    "appbuilder",
    "tests",
    "pyproject.toml",
    "README.md",
]

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
