[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "blazec"
version = "0.1.0"
description = "x86-64 code emission, variable slots and minimal ELF/PE executable building for the Blaze language"
requires-python = ">=3.10"
dependencies = []
keywords = ["compiler", "x86-64", "assembler", "elf", "pe", "codegen", "sse"]
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
    "Topic :: Software Development :: Compilers",
    "Topic :: Software Development :: Assemblers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["blazec"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
