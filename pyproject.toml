[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "modelkit"
version = "0.1.0"
description = "Helpers for packing, referencing and serving ML model kits stored as OCI artifacts"
requires-python = ">=3.10"
keywords = ["oci", "modelkit", "kitfile", "machine-learning", "kitignore", "tar", "llamafile"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "tqdm",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["modelkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
