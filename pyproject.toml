[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "beadwork"
version = "0.1.0"
description = "Storage layer for an issue tracker kept on a dedicated git branch, edited through an in-memory tree"
requires-python = ">=3.10"
dependencies = []
keywords = ["issues", "bug-tracking", "git", "tasks", "templates"]
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
    "Topic :: Software Development :: Bug Tracking",
    "Topic :: Software Development :: Version Control :: Git",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["beadwork"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
