"""SQL grammars: identifier quoting and time bucketing per dialect."""

from slice_engine.grammar.base import Grammar, UnsupportedGrammarError
from slice_engine.grammar.builtin import default_grammars
from slice_engine.grammar.registry import GrammarRegistry

__all__ = [
    "Grammar",
    "GrammarRegistry",
    "UnsupportedGrammarError",
    "default_grammars",
]
