"""Tool declarations as seen by the conversation core.

The core never runs tools. It only needs to know what to advertise to the
model, which tools change external state (for the mutator truncation rule)
and whether a parameter schema refers back to itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set


class ToolKind(str, Enum):
    READ = "read"
    EDIT = "edit"
    DELETE = "delete"
    MOVE = "move"
    SEARCH = "search"
    EXECUTE = "execute"
    FETCH = "fetch"
    THINK = "think"
    OTHER = "other"


# Kinds that change the outside world.
MUTATOR_KINDS = frozenset({ToolKind.EDIT, ToolKind.DELETE, ToolKind.MOVE, ToolKind.EXECUTE})


@dataclass
class ToolDeclaration:
    """A tool the model may call."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    kind: ToolKind = ToolKind.OTHER
    display_name: Optional[str] = None

    @property
    def is_mutator(self) -> bool:
        return self.kind in MUTATOR_KINDS


class ToolRegistry:
    """Name-indexed set of tool declarations."""

    def __init__(self, tools: Iterable[ToolDeclaration] = ()):
        self._tools: Dict[str, ToolDeclaration] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDeclaration) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ToolDeclaration]:
        return self._tools.get(name)

    def declarations(self) -> List[ToolDeclaration]:
        return list(self._tools.values())

    def is_mutator(self, name: str) -> bool:
        tool = self._tools.get(name)
        return tool is not None and tool.is_mutator

    def cyclic_schema_tools(self) -> List[str]:
        """Display names of tools whose parameter schema is self-referential."""
        return [
            tool.display_name or tool.name
            for tool in self._tools.values()
            if has_cycle_in_schema(tool.parameters)
        ]

    def __len__(self) -> int:
        return len(self._tools)


def has_cycle_in_schema(schema: Any) -> bool:
    """Detect ``$ref`` chains in a JSON schema that lead back to themselves.

    Only local references (``#/...``) are followed; a reference that points
    at a node already on the current path is a cycle.
    """

    def resolve(ref: str) -> Any:
        if not ref.startswith("#"):
            return None
        node = schema
        for part in ref.lstrip("#").strip("/").split("/"):
            if not part:
                continue
            part = part.replace("~1", "/").replace("~0", "~")
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return None
        return node

    def walk(node: Any, refs_on_path: Set[str]) -> bool:
        if isinstance(node, dict):
            ref = node.get("$ref")
            if isinstance(ref, str):
                if ref in refs_on_path:
                    return True
                target = resolve(ref)
                if target is not None and walk(target, refs_on_path | {ref}):
                    return True
            return any(walk(v, refs_on_path) for k, v in node.items() if k != "$ref")
        if isinstance(node, list):
            return any(walk(v, refs_on_path) for v in node)
        return False

    return walk(schema, set())
