"""YAML schema loader with safety checks and line tracking for error messages."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.error import YAMLError

from slice_engine.models.errors import ConfigurationError, ErrorDetail
from slice_engine.models.schema import Schema, Source

# ---------------------------------------------------------------------------
# Safety limits
# ---------------------------------------------------------------------------

_MAX_DOCUMENT_SIZE = 1_000_000  # 1M characters
_MAX_NODE_COUNT = 50_000
_MAX_DEPTH = 20

# & after line start, whitespace or a sequence/mapping indicator, then a name
_ANCHOR_RE = re.compile(r"(?:^|[\s\-:])&(\w+)", re.MULTILINE)


class YAMLSafetyError(Exception):
    """Raised when YAML input is oversized, too deep or uses anchors/aliases."""


class SchemaLoader:
    """Loads a ``sources:`` document into a ``Schema``.

    Each key under ``sources`` names a source; relation and dimension names
    come from their own mapping keys. Keys may be snake_case or camelCase.
    """

    def __init__(self) -> None:
        self._yaml = YAML()
        self._lines: dict[str, int] = {}

    # -- safety checks -------------------------------------------------------

    @staticmethod
    def _check_yaml_safety(content: str) -> None:
        if len(content) > _MAX_DOCUMENT_SIZE:
            raise YAMLSafetyError(
                f"YAML document exceeds maximum size "
                f"({len(content):,} chars > {_MAX_DOCUMENT_SIZE:,} limit)"
            )
        if _ANCHOR_RE.search(content):
            raise YAMLSafetyError("YAML anchors/aliases are not supported in schema files")

    @staticmethod
    def _check_structure(data: Any, limit: int = _MAX_NODE_COUNT) -> None:
        count = 0
        stack: list[tuple[Any, int]] = [(data, 1)]
        while stack:
            node, depth = stack.pop()
            count += 1
            if count > limit:
                raise YAMLSafetyError(f"YAML document exceeds maximum node count ({limit:,})")
            if depth > _MAX_DEPTH:
                raise YAMLSafetyError(f"YAML document exceeds maximum depth ({_MAX_DEPTH})")
            if isinstance(node, dict):
                stack.extend((child, depth + 1) for child in node.values())
            elif isinstance(node, list):
                stack.extend((child, depth + 1) for child in node)

    # -- public loading API --------------------------------------------------

    def load(self, path: Path) -> Schema:
        with path.open("r", encoding="utf-8") as handle:
            return self.load_string(handle.read(), filename=str(path))

    def load_string(self, content: str, filename: str = "<string>") -> Schema:
        self._check_yaml_safety(content)
        try:
            data = self._yaml.load(content)
        except YAMLError as exc:
            raise ConfigurationError.single(
                "INVALID_YAML", f"{filename}: cannot parse YAML: {exc}"
            ) from exc
        if data is None:
            return Schema([])
        self._check_structure(data)

        self._lines = {}
        self._record_lines(data, "")
        return self.build(self._to_plain(data), filename)

    def build(self, data: Any, filename: str = "<string>") -> Schema:
        """Build a schema from an already-parsed document."""
        if not isinstance(data, dict) or not isinstance(data.get("sources") or {}, dict):
            raise ConfigurationError.single(
                "INVALID_SCHEMA", f"{filename}: expected a 'sources' mapping at the top level"
            )

        sources: list[Source] = []
        errors: list[ErrorDetail] = []
        for name, body in (data.get("sources") or {}).items():
            try:
                sources.append(Source.model_validate({**(body or {}), "name": name}))
            except ValidationError as exc:
                for err in exc.errors():
                    path = ".".join(str(part) for part in ("sources", name, *err["loc"]))
                    errors.append(
                        ErrorDetail(
                            code="INVALID_SOURCE",
                            message=f"{self._where(filename, path)}: {err['msg']}",
                            source=name,
                        )
                    )
        if errors:
            raise ConfigurationError(errors)
        return Schema(sources)

    # -- helpers -------------------------------------------------------------

    def _where(self, filename: str, path: str) -> str:
        # closest recorded ancestor of the failing path
        probe = path
        while probe and probe not in self._lines:
            probe = probe.rpartition(".")[0]
        if probe:
            return f"{filename}:{self._lines[probe]} ({path})"
        return f"{filename} ({path})"

    def _record_lines(self, data: Any, prefix: str) -> None:
        if isinstance(data, CommentedMap):
            for key in data:
                key_path = f"{prefix}.{key}" if prefix else str(key)
                try:
                    line, _ = data.lc.key(key)
                    self._lines[key_path] = line + 1
                except (AttributeError, KeyError, TypeError):
                    pass
                self._record_lines(data[key], key_path)
        elif isinstance(data, CommentedSeq):
            for i, item in enumerate(data):
                self._record_lines(item, f"{prefix}.{i}")

    def _to_plain(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {str(k): self._to_plain(v) for k, v in data.items()}
        if isinstance(data, list):
            return [self._to_plain(item) for item in data]
        return data
