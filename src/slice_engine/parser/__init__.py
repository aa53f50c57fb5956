"""YAML schema loading for slice-engine."""

from slice_engine.parser.loader import SchemaLoader, YAMLSafetyError

__all__ = [
    "SchemaLoader",
    "YAMLSafetyError",
]
