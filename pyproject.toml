[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "luabc"
version = "0.1.0"
description = "Reader for Lua 5.1 bytecode chunks and lifter of their functions into control-flow graphs"
requires-python = ">=3.10"
dependencies = []
keywords = ["lua", "lua51", "bytecode", "disassembler", "control-flow-graph"]
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
    "Topic :: Software Development :: Disassemblers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["luabc"]

[tool.pytest.ini_options]
addopts = "-ra"
