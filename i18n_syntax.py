"""tree-sitter plumbing shared by the scanner, the rewriter and the syncer.

Parsing tries an ordered list of grammars per file suffix (the suffix's own
grammar first, then lenient alternates). A tree counts as parsed only when it
carries no ERROR/MISSING node, because rewriting inside a recovered tree can
corrupt code.
"""

from __future__ import annotations

import bisect
import html
import re
from collections.abc import Iterator
from dataclasses import dataclass
from functools import lru_cache

import tree_sitter_javascript as ts_javascript
import tree_sitter_typescript as ts_typescript
from tree_sitter import Language, Node, Parser, Tree

GRAMMAR_CASCADE: dict[str, tuple[str, ...]] = {
    ".js": ("javascript", "tsx"),
    ".jsx": ("javascript", "tsx"),
    ".mjs": ("javascript", "tsx"),
    ".cjs": ("javascript", "tsx"),
    ".ts": ("typescript", "tsx"),
    ".mts": ("typescript", "tsx"),
    ".cts": ("typescript", "tsx"),
    ".tsx": ("tsx", "typescript"),
}

FILE_DIRECTIVE = "i18n-ignore-file"
LINE_DIRECTIVE_RE = re.compile(r"i18n-ignore(?!-file)")
LEADING_COMMENT_LINE_RE = re.compile(r"^\s*(?://|/\*|\*|#!|$)")

STATEMENT_LIKE_TYPES = {
    "expression_statement",
    "lexical_declaration",
    "variable_declaration",
    "return_statement",
    "if_statement",
    "for_statement",
    "for_in_statement",
    "while_statement",
    "do_statement",
    "switch_statement",
    "try_statement",
    "throw_statement",
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "export_statement",
    "method_definition",
    "public_field_definition",
    "field_definition",
    "pair",
    "jsx_element",
    "jsx_self_closing_element",
    "jsx_expression",
}

ESTREE_TYPES = {
    "identifier": "Identifier",
    "undefined": "Identifier",
    "this": "ThisExpression",
    "super": "Super",
    "string": "StringLiteral",
    "template_string": "TemplateLiteral",
    "regex": "RegExpLiteral",
    "true": "BooleanLiteral",
    "false": "BooleanLiteral",
    "null": "NullLiteral",
    "object": "ObjectExpression",
    "array": "ArrayExpression",
    "function": "FunctionExpression",
    "function_expression": "FunctionExpression",
    "generator_function": "FunctionExpression",
    "arrow_function": "ArrowFunctionExpression",
    "class": "ClassExpression",
    "ternary_expression": "ConditionalExpression",
    "unary_expression": "UnaryExpression",
    "update_expression": "UpdateExpression",
    "await_expression": "AwaitExpression",
    "yield_expression": "YieldExpression",
    "assignment_expression": "AssignmentExpression",
    "augmented_assignment_expression": "AssignmentExpression",
    "sequence_expression": "SequenceExpression",
    "new_expression": "NewExpression",
    "spread_element": "SpreadElement",
    "jsx_self_closing_element": "JSXElement",
    "as_expression": "TSAsExpression",
    "satisfies_expression": "TSSatisfiesExpression",
    "non_null_expression": "TSNonNullExpression",
    "type_assertion": "TSTypeAssertion",
    "meta_property": "MetaProperty",
}
LOGICAL_OPERATORS = {"&&", "||", "??"}

JS_ESCAPE_RE = re.compile(
    r"\\(u\{[0-9A-Fa-f]+\}|u[0-9A-Fa-f]{4}|x[0-9A-Fa-f]{2}|[0-7]{1,3}|\r\n|[\s\S])"
)
SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "\n": "",
    "\r": "",
    "\r\n": "",
    "\u2028": "",
    "\u2029": "",
}


@lru_cache(maxsize=None)
def get_language(name: str) -> Language:
    if name == "javascript":
        return Language(ts_javascript.language())
    if name == "typescript":
        return Language(ts_typescript.language_typescript())
    if name == "tsx":
        return Language(ts_typescript.language_tsx())
    raise ValueError(f"Unknown grammar: {name}")


def grammars_for(suffix: str) -> tuple[str, ...]:
    return GRAMMAR_CASCADE.get(suffix.lower(), ("tsx", "typescript", "javascript"))


@dataclass(frozen=True)
class ParseOutcome:
    tree: Tree
    grammar: str
    strict: bool


def first_error_line(root: Node) -> int | None:
    for node in iter_nodes(root):
        if node.type == "ERROR" or node.is_missing:
            return node.start_point[0] + 1
    return None


def parse_source(source: bytes, suffix: str) -> tuple[ParseOutcome | None, list[str]]:
    """Parse with each grammar configured for ``suffix`` until one is clean."""
    errors: list[str] = []
    for idx, grammar in enumerate(grammars_for(suffix)):
        parser = Parser(get_language(grammar))
        tree = parser.parse(source)
        if not tree.root_node.has_error:
            return ParseOutcome(tree=tree, grammar=grammar, strict=idx == 0), errors
        line = first_error_line(tree.root_node)
        where = f" near line {line}" if line else ""
        errors.append(f"{grammar}: syntax error{where}")
    return None, errors


def iter_nodes(root: Node) -> Iterator[Node]:
    """Pre-order walk without recursion (deep JSX trees hit the stack limit)."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        children = node.children
        if children:
            stack.extend(reversed(children))


def node_text(node: Node, source: bytes) -> str:
    return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")


def node_line(node: Node) -> int:
    return node.start_point[0] + 1


def node_end_line(node: Node) -> int:
    return node.end_point[0] + 1


def decode_js_string(raw: str) -> str:
    def repl(match: re.Match[str]) -> str:
        esc = match.group(1)
        if esc.startswith("u{"):
            return chr(int(esc[2:-1], 16))
        if esc[0] == "u" and len(esc) == 5:
            return chr(int(esc[1:], 16))
        if esc[0] == "x" and len(esc) == 3:
            return chr(int(esc[1:], 16))
        if esc[0] in "01234567":
            return chr(int(esc, 8))
        return SIMPLE_ESCAPES.get(esc, esc)

    decoded = JS_ESCAPE_RE.sub(repl, raw)
    # \uD83D\uDE00 style pairs come out as two lone surrogates
    return decoded.encode("utf-16", "surrogatepass").decode("utf-16")


def is_jsx_attribute_value(node: Node) -> bool:
    parent = node.parent
    return parent is not None and parent.type == "jsx_attribute"


def string_value(node: Node, source: bytes) -> str:
    raw = source[node.start_byte + 1 : node.end_byte - 1].decode(
        "utf-8", errors="replace"
    )
    if is_jsx_attribute_value(node):
        return html.unescape(raw)
    return decode_js_string(raw)


def unwrap_parens(node: Node) -> Node:
    while node.type == "parenthesized_expression" and node.named_children:
        node = node.named_children[0]
    return node


def has_optional_chain(node: Node) -> bool:
    return any(child.type in {"optional_chain", "?."} for child in node.children)


def estree_type(node: Node) -> str:
    """Babel/ESTree type name of an expression node.

    Template placeholders are named after these so ledgers written by the
    Babel based tool keep their keys.
    """
    node = unwrap_parens(node)
    kind = node.type
    if kind in ESTREE_TYPES:
        return ESTREE_TYPES[kind]
    if kind == "number":
        return "BigIntLiteral" if node.text.endswith(b"n") else "NumericLiteral"
    if kind in {"member_expression", "subscript_expression"}:
        return "OptionalMemberExpression" if has_optional_chain(node) else "MemberExpression"
    if kind == "call_expression":
        args = node.child_by_field_name("arguments")
        if args is not None and args.type == "template_string":
            return "TaggedTemplateExpression"
        return "OptionalCallExpression" if has_optional_chain(node) else "CallExpression"
    if kind == "binary_expression":
        operator = node.child_by_field_name("operator")
        if operator is not None and operator.type in LOGICAL_OPERATORS:
            return "LogicalExpression"
        return "BinaryExpression"
    if kind == "jsx_element":
        opening = node.child_by_field_name("open_tag")
        if opening is not None and opening.child_by_field_name("name") is None:
            return "JSXFragment"
        return "JSXElement"
    return "".join(part.capitalize() for part in kind.split("_") if part)


class CommentIndex:
    """Sorted, non-overlapping comment spans with containment lookup."""

    def __init__(self, ranges: list[tuple[int, int]]) -> None:
        self._ranges = sorted(ranges)
        self._starts = [start for start, _ in self._ranges]

    def __len__(self) -> int:
        return len(self._ranges)

    def contains(self, start: int, end: int) -> bool:
        idx = bisect.bisect_right(self._starts, start) - 1
        if idx < 0:
            return False
        range_start, range_end = self._ranges[idx]
        return start >= range_start and end <= range_end

    @classmethod
    def from_tree(cls, root: Node) -> CommentIndex:
        ranges = [
            (node.start_byte, node.end_byte)
            for node in iter_nodes(root)
            if node.type in {"comment", "html_comment"}
        ]
        return cls(ranges)

    @classmethod
    def from_text(cls, text: str) -> CommentIndex:
        return cls(scan_comment_ranges(text))


def scan_comment_ranges(text: str) -> list[tuple[int, int]]:
    """Lexical comment scan for sources that have no usable syntax tree.

    Quote aware but not regex or JSX aware, so results are approximate.
    """
    normal, line_comment, block_comment, quoted = 0, 1, 2, 3
    state = normal
    quote = ""
    ranges: list[tuple[int, int]] = []
    start = 0
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if state == normal:
            if ch == "/" and nxt == "/":
                start = i
                state = line_comment
                i += 2
                continue
            if ch == "/" and nxt == "*":
                start = i
                state = block_comment
                i += 2
                continue
            if ch in "'\"`":
                quote = ch
                state = quoted
            i += 1
            continue

        if state == line_comment:
            if ch in "\r\n":
                ranges.append((start, i))
                state = normal
            i += 1
            continue

        if state == block_comment:
            if ch == "*" and nxt == "/":
                ranges.append((start, i + 2))
                state = normal
                i += 2
                continue
            i += 1
            continue

        if ch == "\\" and i + 1 < n:
            i += 2
            continue
        if ch == quote or (ch == "\n" and quote != "`"):
            state = normal
        i += 1

    if state in {line_comment, block_comment}:
        ranges.append((start, n))
    return ranges


@dataclass(frozen=True)
class Suppression:
    file_suppressed: bool
    lines: frozenset[int]
    directives: frozenset[int] = frozenset()

    def covers(self, start_line: int, end_line: int) -> bool:
        """Line directives only; ``file_suppressed`` is checked separately.

        A directive line also covers the line right below it.
        """
        if start_line - 1 in self.directives:
            return True
        return any(line in self.lines for line in range(start_line, end_line + 1))


def has_file_directive(text: str) -> bool:
    """True when the leading comment block of the file carries the directive."""
    for line in text.splitlines():
        if not LEADING_COMMENT_LINE_RE.match(line):
            return False
        if FILE_DIRECTIVE in line:
            return True
    return False


def directive_lines(text: str) -> list[int]:
    return [
        idx
        for idx, line in enumerate(text.splitlines(), start=1)
        if LINE_DIRECTIVE_RE.search(line)
    ]


def _next_code_line(lines: list[str], after: int) -> int | None:
    in_block = False
    for idx in range(after, len(lines)):
        stripped = lines[idx].strip()
        if in_block:
            if "*/" in stripped:
                in_block = False
                stripped = stripped.split("*/", 1)[1].strip()
                if not stripped:
                    continue
            else:
                continue
        if not stripped or stripped.startswith("//"):
            continue
        if stripped.startswith(("/*", "{/*")):
            if "*/" not in stripped:
                in_block = True
                continue
            if not stripped.split("*/", 1)[1].strip(" }"):
                continue
        return idx + 1
    return None


def build_suppression(text: str, root: Node | None = None) -> Suppression:
    """Compute suppressed line numbers once per file.

    A directive suppresses its own line and the line below it. With a syntax
    tree, it additionally covers the whole span of the statement that starts
    on the next code line.
    """
    if has_file_directive(text):
        return Suppression(file_suppressed=True, lines=frozenset())
    marked = directive_lines(text)
    lines = set(marked)
    if root is not None and marked:
        spans: dict[int, int] = {}
        for node in iter_nodes(root):
            if node.type not in STATEMENT_LIKE_TYPES:
                continue
            start = node_line(node)
            spans[start] = max(spans.get(start, start), node_end_line(node))
        source_lines = text.splitlines()
        for line_no in marked:
            target = _next_code_line(source_lines, line_no)
            if target is None or target not in spans:
                continue
            lines.update(range(target, spans[target] + 1))
    return Suppression(
        file_suppressed=False, lines=frozenset(lines), directives=frozenset(marked)
    )
