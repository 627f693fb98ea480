"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import json
from collections.abc import Callable
from time import perf_counter
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from complaint_agent.types import ToolDeclaration, ToolTrace


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], Any]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self.args_schema.model_validate(payload)
        return normalize_tool_output(self.handler(data))

    def declaration(self) -> ToolDeclaration:
        return ToolDeclaration(
            name=self.name,
            description=self.description,
            parameter_schema=simplify_schema(self.args_schema.model_json_schema()),
        )


def normalize_tool_output(output: Any) -> dict[str, Any]:
    """Tool results always travel as JSON objects."""
    if isinstance(output, BaseModel):
        return output.model_dump(mode="json")
    if isinstance(output, dict):
        return output
    if isinstance(output, str):
        return {"text": output}
    return {"result": output}


def simplify_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Reduce a pydantic JSON schema to type/description/enum/items/required.

    `Optional[X]` collapses to `X`; titles, defaults and `$defs` are dropped
    because neither provider dialect needs them.
    """
    definitions = schema.get("$defs", {})

    def _resolve(node: dict[str, Any]) -> dict[str, Any]:
        ref = node.get("$ref")
        if isinstance(ref, str):
            node = definitions.get(ref.rsplit("/", 1)[-1], {})
        variants = node.get("anyOf")
        if variants:
            non_null = [variant for variant in variants if variant.get("type") != "null"]
            merged = dict(non_null[0]) if non_null else {"type": "string"}
            if "description" in node:
                merged.setdefault("description", node["description"])
            node = merged

        simplified: dict[str, Any] = {}
        if "type" in node:
            simplified["type"] = node["type"]
        elif "enum" in node:
            simplified["type"] = "string"
        if "description" in node:
            simplified["description"] = node["description"]
        if "enum" in node:
            simplified["enum"] = list(node["enum"])
        if "items" in node:
            simplified["items"] = _resolve(node["items"])
        if "properties" in node:
            simplified["properties"] = {name: _resolve(sub) for name, sub in node["properties"].items()}
            simplified["required"] = list(node.get("required", []))
        return simplified

    return _resolve(schema)


class ToolRegistry:
    """Stores tool specs and exports provider-agnostic declarations."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def execute(
        self,
        name: str,
        payload: dict[str, Any],
        *,
        observer: Callable[[ToolTrace], None] | None = None,
    ) -> dict[str, Any]:
        """Validate and run a tool. `observer` overrides the registry-wide one."""
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return self._execute_spec(spec, payload, observer or self._observer)

    def has(self, name: str) -> bool:
        return name in self._tools

    def declarations(self) -> list[ToolDeclaration]:
        return [spec.declaration() for spec in self._tools.values()]

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def _execute_spec(
        self,
        spec: ToolSpec,
        payload: dict[str, Any],
        observer: Callable[[ToolTrace], None] | None,
    ) -> dict[str, Any]:
        start = perf_counter()
        output = spec.invoke(payload)
        latency_ms = (perf_counter() - start) * 1000.0

        if observer is not None:
            observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=json.dumps(output, ensure_ascii=False, default=str)[:320],
                    latency_ms=latency_ms,
                )
            )
        return output
