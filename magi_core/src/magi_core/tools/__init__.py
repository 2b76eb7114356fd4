"""Function tools available to tool-calling agents."""

from magi_core.tools.registry import (
    Tool,
    ToolExecutionError,
    ToolRegistry,
    UnknownToolError,
    build_default_registry,
)

__all__ = [
    "Tool",
    "ToolExecutionError",
    "ToolRegistry",
    "UnknownToolError",
    "build_default_registry",
]
