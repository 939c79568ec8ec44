"""Reading Lua 5.1 bytecode chunks and lifting their functions into control-flow graphs."""

__version__ = "0.1.0"

__all__ = ["blocks", "chunk", "function", "instruction", "ir", "lifter", "value"]