"""Exclusion rules shared by extraction and rewriting.

Each rule is a small predicate object; a candidate is skipped when any rule
matches. The scanner and the rewriter build the same rule set from the same
config, so both agree on exactly which nodes are translatable.
"""

from __future__ import annotations

from dataclasses import dataclass

from tree_sitter import Node

from i18n_config import ToolConfig
from i18n_syntax import CommentIndex, Suppression, node_end_line, node_line

TYPE_ONLY_TYPES = frozenset(
    {
        "type_alias_declaration",
        "interface_declaration",
        "property_signature",
        "method_signature",
        "call_signature",
        "construct_signature",
        "index_signature",
        "abstract_method_signature",
        "object_type",
        "union_type",
        "intersection_type",
        "literal_type",
        "type_annotation",
        "opting_type_annotation",
        "omitting_type_annotation",
        "type_arguments",
        "type_parameters",
        "type_parameter",
        "generic_type",
        "tuple_type",
        "array_type",
        "function_type",
        "constructor_type",
        "conditional_type",
        "lookup_type",
        "index_type_query",
        "template_literal_type",
        "mapped_type_clause",
        "ambient_declaration",
    }
)

VALUE_BOUNDARY_TYPES = frozenset(
    {
        "program",
        "statement_block",
        "class_body",
        "expression_statement",
        "return_statement",
        "variable_declarator",
        "assignment_expression",
        "arguments",
        "call_expression",
        "new_expression",
        "arrow_function",
        "function_expression",
        "function",
        "object",
        "array",
        "pair",
        "jsx_element",
        "jsx_expression",
        "jsx_attribute",
        "template_substitution",
        "enum_body",
    }
)

TRANSPARENT_WRAPPERS = frozenset({"parenthesized_expression", "jsx_expression"})


@dataclass(frozen=True)
class NodeContext:
    node: Node
    source: bytes
    comments: CommentIndex
    suppression: Suppression
    config: ToolConfig
    line_span: tuple[int, int] | None = None

    @property
    def start_line(self) -> int:
        if self.line_span is not None:
            return self.line_span[0]
        return node_line(self.node)

    @property
    def end_line(self) -> int:
        if self.line_span is not None:
            return self.line_span[1]
        return node_end_line(self.node)


def _strip_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"`":
        return text[1:-1]
    return text


def _compact(raw: bytes) -> str:
    return "".join(raw.decode("utf-8", errors="replace").split())


class CommentSpanRule:
    name = "comment"

    def matches(self, ctx: NodeContext) -> bool:
        return ctx.comments.contains(ctx.node.start_byte, ctx.node.end_byte)


class TypeOnlyRule:
    """Text inside a type position never reaches the screen."""

    name = "type-only"

    def matches(self, ctx: NodeContext) -> bool:
        parent = ctx.node.parent
        while parent is not None:
            if parent.type in TYPE_ONLY_TYPES:
                return True
            if parent.type in VALUE_BOUNDARY_TYPES:
                return False
            parent = parent.parent
        return False


@dataclass(frozen=True)
class StyleFactoryRule:
    factories: frozenset[str]
    name: str = "style-factory"

    def matches(self, ctx: NodeContext) -> bool:
        parent = ctx.node.parent
        while parent is not None:
            if parent.type == "call_expression":
                callee = parent.child_by_field_name("function")
                if callee is not None and _compact(callee.text) in self.factories:
                    return True
            parent = parent.parent
        return False


@dataclass(frozen=True)
class MetadataAttributeRule:
    """Values bound to testID-like attributes, props or member assignments."""

    attributes: frozenset[str]
    name: str = "test-attribute"

    def _climb(self, node: Node) -> tuple[Node, Node | None]:
        current = node
        parent = node.parent
        while parent is not None:
            if parent.type == "binary_expression":
                operator = parent.child_by_field_name("operator")
                if operator is None or operator.type != "+":
                    break
            elif parent.type not in TRANSPARENT_WRAPPERS:
                break
            current = parent
            parent = parent.parent
        return current, parent

    def _binding_name(self, current: Node, parent: Node) -> str | None:
        if parent.type == "jsx_attribute":
            named = parent.named_children
            if named and named[0].id != current.id:
                return named[0].text.decode("utf-8", errors="replace")
            return None
        if parent.type == "pair":
            value = parent.child_by_field_name("value")
            key = parent.child_by_field_name("key")
            if value is None or key is None or value.id != current.id:
                return None
            return _strip_quotes(key.text.decode("utf-8", errors="replace"))
        if parent.type in {"assignment_expression", "augmented_assignment_expression"}:
            right = parent.child_by_field_name("right")
            left = parent.child_by_field_name("left")
            if right is None or left is None or right.id != current.id:
                return None
            if left.type == "member_expression":
                prop = left.child_by_field_name("property")
                if prop is not None:
                    return prop.text.decode("utf-8", errors="replace")
            if left.type == "subscript_expression":
                index = left.child_by_field_name("index")
                if index is not None:
                    return _strip_quotes(index.text.decode("utf-8", errors="replace"))
        return None

    def matches(self, ctx: NodeContext) -> bool:
        current, parent = self._climb(ctx.node)
        if parent is None:
            return False
        name = self._binding_name(current, parent)
        return name is not None and name in self.attributes


class DirectiveRule:
    name = "i18n-ignore"

    def matches(self, ctx: NodeContext) -> bool:
        return ctx.suppression.covers(ctx.start_line, ctx.end_line)


class FileDirectiveRule:
    name = "i18n-ignore-file"

    def matches(self, ctx: NodeContext) -> bool:
        return ctx.suppression.file_suppressed


class RuleSet:
    def __init__(self, rules: list) -> None:
        self.rules = list(rules)

    def first_match(self, ctx: NodeContext) -> str | None:
        for rule in self.rules:
            if rule.matches(ctx):
                return rule.name
        return None

    def excludes(self, ctx: NodeContext) -> bool:
        return self.first_match(ctx) is not None


def default_rules(config: ToolConfig) -> RuleSet:
    return RuleSet(
        [
            FileDirectiveRule(),
            CommentSpanRule(),
            DirectiveRule(),
            TypeOnlyRule(),
            StyleFactoryRule(frozenset(config.style_factories)),
            MetadataAttributeRule(frozenset(config.test_attributes)),
        ]
    )
