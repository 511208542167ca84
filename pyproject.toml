[build-system]
requires = ["setuptools>=61"]
build-backend = "setuptools.build_meta"

[project]
name = "lc3vm"
version = "0.1.0"
description = "LC-3 virtual machine with a single-step debugger and a small line editor"
requires-python = ">=3.10"
dependencies = []
keywords = ["lc3", "emulator", "virtual machine", "debugger", "line editing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
lc3vm = "lc3vm.debugger:main"

[tool.setuptools.packages.find]
include = ["lc3vm*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
