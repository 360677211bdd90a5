"""JSON-schema validation of tool arguments against a tool's declared parameters."""

from __future__ import annotations

import jsonschema

from chatloop.tools.base import Tool


class ToolValidator:
    @staticmethod
    def validate(tool: Tool, arguments: dict) -> tuple[bool, str | None]:
        """
        Check *arguments* against ``tool.input_schema()``.

        Returns ``(True, None)`` or ``(False, message)`` where the message
        names the offending field, e.g. ``invocations: 5 is not of type
        'array'``.
        """
        schema = tool.input_schema()
        validator_cls = jsonschema.validators.validator_for(schema)
        errors = sorted(
            validator_cls(schema).iter_errors(arguments),
            key=lambda e: (len(e.path), list(map(str, e.path))),
        )
        if not errors:
            return True, None
        first = errors[0]
        location = ".".join(str(p) for p in first.path)
        return False, f"{location}: {first.message}" if location else first.message
