"""
Language registry for syntax-aware chunking.

Each entry maps a file extension to the tree-sitter grammar that parses it and
to the syntax node types that count as named definitions (functions, classes)
or import statements in that grammar. Extensions without an entry are chunked
with the generic paragraph algorithm.
"""

from dataclasses import dataclass
import os
from typing import Dict, FrozenSet, Optional


@dataclass(frozen=True)
class LanguageSpec:
    """Node types of interest in one tree-sitter grammar."""

    name: str
    grammar: str
    functions: FrozenSet[str]
    classes: FrozenSet[str]
    imports: FrozenSet[str]
    # Declarators whose value is a function expression count as named functions.
    function_values: FrozenSet[str] = frozenset()


GO = LanguageSpec(
    name="go",
    grammar="go",
    functions=frozenset({"function_declaration", "method_declaration"}),
    classes=frozenset({"type_spec"}),
    imports=frozenset({"import_declaration"}),
)

PYTHON = LanguageSpec(
    name="python",
    grammar="python",
    functions=frozenset({"function_definition"}),
    classes=frozenset({"class_definition"}),
    imports=frozenset({"import_statement", "import_from_statement"}),
)

_JS_FUNCTIONS = frozenset(
    {
        "function_declaration",
        "generator_function_declaration",
        "method_definition",
    }
)
_JS_FUNCTION_VALUES = frozenset(
    {"function", "function_expression", "arrow_function", "generator_function"}
)

JAVASCRIPT = LanguageSpec(
    name="javascript",
    grammar="javascript",
    functions=_JS_FUNCTIONS,
    classes=frozenset({"class_declaration"}),
    imports=frozenset({"import_statement"}),
    function_values=_JS_FUNCTION_VALUES,
)

_TS_CLASSES = frozenset(
    {
        "class_declaration",
        "abstract_class_declaration",
        "interface_declaration",
        "type_alias_declaration",
    }
)

TYPESCRIPT = LanguageSpec(
    name="typescript",
    grammar="typescript",
    functions=_JS_FUNCTIONS,
    classes=_TS_CLASSES,
    imports=frozenset({"import_statement"}),
    function_values=_JS_FUNCTION_VALUES,
)

TSX = LanguageSpec(
    name="tsx",
    grammar="tsx",
    functions=_JS_FUNCTIONS,
    classes=_TS_CLASSES,
    imports=frozenset({"import_statement"}),
    function_values=_JS_FUNCTION_VALUES,
)

JAVA = LanguageSpec(
    name="java",
    grammar="java",
    functions=frozenset({"method_declaration", "constructor_declaration"}),
    classes=frozenset(
        {"class_declaration", "interface_declaration", "enum_declaration"}
    ),
    imports=frozenset({"import_declaration"}),
)

RUST = LanguageSpec(
    name="rust",
    grammar="rust",
    functions=frozenset({"function_item"}),
    classes=frozenset({"struct_item", "enum_item", "trait_item", "impl_item"}),
    imports=frozenset({"use_declaration"}),
)

# A registry mapping file extensions to their LanguageSpec.
LANGUAGE_REGISTRY: Dict[str, LanguageSpec] = {
    ".go": GO,
    ".py": PYTHON,
    ".js": JAVASCRIPT,
    ".jsx": JAVASCRIPT,
    ".ts": TYPESCRIPT,
    ".tsx": TSX,
    ".java": JAVA,
    ".rs": RUST,
}


def language_for_file(path: str) -> Optional[LanguageSpec]:
    """Returns the LanguageSpec registered for a file's extension, if any."""
    _, ext = os.path.splitext(path)
    return LANGUAGE_REGISTRY.get(ext.lower())
