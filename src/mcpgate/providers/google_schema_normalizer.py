"""Rewrite JSON Schema tool parameters into the subset Gemini accepts."""

import copy
from typing import Any, Dict, List, Tuple

# Keywords Gemini's function-declaration schema rejects
UNSUPPORTED_KEYWORDS = frozenset(
    {
        "$schema",
        "$id",
        "$ref",
        "$defs",
        "definitions",
        "additionalProperties",
        "patternProperties",
        "unevaluatedProperties",
        "dependencies",
        "dependentRequired",
        "dependentSchemas",
        "anyOf",
        "oneOf",
        "allOf",
        "not",
        "if",
        "then",
        "else",
        "const",
        "pattern",
        "multipleOf",
        "exclusiveMinimum",
        "exclusiveMaximum",
        "contains",
        "uniqueItems",
        "examples",
        "format",
    }
)


class GoogleSchemaNormalizer:
    """
    Normalize tool input schemas for Gemini function declarations.

    Capability servers publish plain JSON Schema; Gemini only understands an
    OpenAPI-like subset. Normalization never fails: anything that cannot be
    expressed is dropped or widened, and each change is reported as a note.
    """

    @classmethod
    def normalize(cls, schema: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """
        Args:
            schema: JSON Schema (not modified)

        Returns:
            Tuple of (normalized schema, notes describing each change)
        """
        notes: List[str] = []
        if not isinstance(schema, dict):
            return {"type": "object", "properties": {}}, ["<root>: non-object schema replaced"]
        normalized = cls._normalize_node(copy.deepcopy(schema), "", notes)
        return normalized, notes

    @classmethod
    def _normalize_node(cls, node: Dict[str, Any], path: str, notes: List[str]) -> Dict[str, Any]:
        where = path or "<root>"

        removed = sorted(key for key in node if key in UNSUPPORTED_KEYWORDS)
        if removed:
            for key in removed:
                node.pop(key)
            notes.append(f"{where}: removed unsupported keywords {removed}")

        schema_type = node.get("type")
        if isinstance(schema_type, list):
            non_null = [t for t in schema_type if t != "null"]
            if len(non_null) == 1:
                node["type"] = non_null[0]
                if len(non_null) != len(schema_type):
                    node["nullable"] = True
                    notes.append(f"{where}: removed 'null' from union type")
            else:
                node["type"] = "string"
                notes.append(f"{where}: multi-type union {schema_type} normalized to 'string'")

        properties = node.get("properties")
        if isinstance(properties, dict):
            node["properties"] = {
                name: cls._normalize_node(value, cls._join(path, "properties", name), notes)
                if isinstance(value, dict)
                else value
                for name, value in properties.items()
            }
            required = node.get("required")
            if isinstance(required, list):
                node["required"] = [name for name in required if name in node["properties"]]

        items = node.get("items")
        if isinstance(items, list):
            node["items"] = items[0] if items else {"type": "string"}
            notes.append(f"{where}: tuple-typed 'items' normalized to first schema")
            items = node["items"]
        if isinstance(items, dict):
            node["items"] = cls._normalize_node(items, cls._join(path, "items"), notes)

        return node

    @staticmethod
    def _join(*parts: str) -> str:
        return ".".join(part for part in parts if part)
