[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "playbox"
version = "0.1.0"
description = "A small code playground: a TCP server that builds and runs submitted programs in Docker containers and streams their output back to clients."
requires-python = ">=3.10"
dependencies = []
keywords = ["playground", "sandbox", "docker", "tcp", "compiler", "runner"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Interpreters",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
playbox-server = "playbox.server:main"
playbox-playground = "playbox.playground:main"

[tool.hatch.build.targets.wheel]
packages = ["playbox"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
