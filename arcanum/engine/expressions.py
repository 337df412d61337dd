"""
Restricted condition language for criteria/expression gates.

Conditions are written in the JavaScript-flavoured notation protocol
authors already use, but only a small, explicit grammar is accepted:

    expr        := or_expr
    or_expr     := and_expr ( "||" and_expr )*
    and_expr    := unary ( "&&" unary )*
    unary       := "!" unary | "(" expr ")" | comparison
    comparison  := operand [ cmp_op literal ]
    operand     := path [ ("." | "?.") "length" ]
                 | path ("." | "?.") ("every" | "some")
                   "(" IDENT "=>" IDENT "." IDENT cmp_op literal ")"
    path        := "state" ( ("." | "?.") IDENT )*
    cmp_op      := "===" | "!==" | "==" | "!=" | ">" | ">=" | "<" | "<="
    literal     := STRING | NUMBER | true | false | null | undefined

Examples:
    state.tasks && state.tasks.length > 0
    !state.tasks || state.tasks.length === 0
    state.review.status === 'approved'
    state.tasks?.every(t => t.status === 'done')
    state.tasks?.some(t => t.status !== 'done')

Strings are tokenized and parsed into a small AST which is evaluated
directly against the state mapping. Nothing is ever passed to eval().
"""

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Mapping, Optional, Tuple, Union

from arcanum.utils import to_display_string

logger = logging.getLogger(__name__)


class ExpressionSyntaxError(ValueError):
    """The condition string is outside the supported grammar."""


class _Missing:
    """Marker for a field that does not exist (JavaScript ``undefined``)."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "undefined"


MISSING = _Missing()

EQUALITY_OPS = ("===", "!==", "==", "!=")
ORDERING_OPS = (">", ">=", "<", "<=")
COMPARISON_OPS = EQUALITY_OPS + ORDERING_OPS
QUANTIFIERS = ("every", "some")


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    kind: str  # NUMBER, STRING, OP, IDENT
    text: str
    pos: int


_TOKEN_PATTERN = re.compile(
    r"""
    (?P<WS>\s+)
    |(?P<NUMBER>-?\d+(?:\.\d+)?)
    |(?P<STRING>'[^']*'|"[^"]*")
    |(?P<OP>===|!==|==|!=|>=|<=|=>|&&|\|\||\?\.|[!<>().])
    |(?P<IDENT>[A-Za-z_$][A-Za-z0-9_$]*)
    """,
    re.VERBOSE,
)


def tokenize(text: str) -> List[Token]:
    """Split a condition into tokens, rejecting any unknown character."""
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_PATTERN.match(text, pos)
        if match is None:
            raise ExpressionSyntaxError(f"Unexpected character {text[pos]!r} at {pos}")
        kind = match.lastgroup
        if kind != "WS":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Any  # str, int, float, bool, None or MISSING


@dataclass(frozen=True)
class FieldPath:
    segments: Tuple[str, ...]


@dataclass(frozen=True)
class Length:
    path: FieldPath


@dataclass(frozen=True)
class Quantifier:
    kind: str  # "every" or "some"
    path: FieldPath
    null_safe: bool
    item_field: str
    op: str
    literal: Literal


@dataclass(frozen=True)
class Compare:
    left: Union[FieldPath, Length, Quantifier]
    op: str
    right: Literal


@dataclass(frozen=True)
class Not:
    operand: "Node"


@dataclass(frozen=True)
class And:
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Or:
    left: "Node"
    right: "Node"


Node = Union[FieldPath, Length, Quantifier, Compare, Not, And, Or]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


# Deeper or longer conditions are rejected as unsupported
MAX_NESTING = 32
MAX_OPERATORS = 128


class _Parser:
    """Recursive-descent parser over the token list."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0
        self.operators = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionSyntaxError("Empty expression")
        node = self.parse_or()
        if self.peek() is not None:
            token = self.peek()
            raise ExpressionSyntaxError(f"Unexpected {token.text!r} at {token.pos}")
        return node

    # Token helpers

    def peek(self, offset: int = 0) -> Optional[Token]:
        index = self.pos + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def peek_is(self, text: str, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token is not None and token.kind in ("OP", "IDENT") and token.text == text

    def advance(self) -> Token:
        token = self.peek()
        if token is None:
            raise ExpressionSyntaxError("Unexpected end of expression")
        self.pos += 1
        return token

    def expect(self, text: str) -> Token:
        token = self.advance()
        if token.text != text:
            raise ExpressionSyntaxError(f"Expected {text!r}, got {token.text!r} at {token.pos}")
        return token

    def expect_ident(self) -> str:
        token = self.advance()
        if token.kind != "IDENT":
            raise ExpressionSyntaxError(f"Expected identifier, got {token.text!r} at {token.pos}")
        return token.text

    # Grammar

    def count_operator(self) -> None:
        self.operators += 1
        if self.operators > MAX_OPERATORS:
            raise ExpressionSyntaxError(f"More than {MAX_OPERATORS} logical operators")

    def parse_or(self) -> Node:
        node = self.parse_and()
        while self.peek_is("||"):
            self.advance()
            self.count_operator()
            node = Or(node, self.parse_and())
        return node

    def parse_and(self) -> Node:
        node = self.parse_unary()
        while self.peek_is("&&"):
            self.advance()
            self.count_operator()
            node = And(node, self.parse_unary())
        return node

    def parse_unary(self) -> Node:
        if not (self.peek_is("!") or self.peek_is("(")):
            return self.parse_comparison()

        self.depth += 1
        if self.depth > MAX_NESTING:
            raise ExpressionSyntaxError(f"Expression nested deeper than {MAX_NESTING} levels")
        if self.advance().text == "!":
            node = Not(self.parse_unary())
        else:
            node = self.parse_or()
            self.expect(")")
        self.depth -= 1
        return node

    def parse_comparison(self) -> Node:
        operand = self.parse_operand()
        token = self.peek()
        if token is not None and token.kind == "OP" and token.text in COMPARISON_OPS:
            op = self.advance().text
            return Compare(operand, op, self.parse_literal())
        return operand

    def parse_operand(self) -> Union[FieldPath, Length, Quantifier]:
        root = self.expect_ident()
        if root != "state":
            raise ExpressionSyntaxError(f"Paths must start with 'state', got {root!r}")

        segments: List[str] = []
        while self.peek_is(".") or self.peek_is("?."):
            accessor = self.advance().text
            name = self.expect_ident()
            path = FieldPath(tuple(segments))

            if name in QUANTIFIERS and self.peek_is("("):
                return self.parse_quantifier(name, path, null_safe=accessor == "?.")
            if name == "length" and not (self.peek_is(".") or self.peek_is("?.")):
                return Length(path)
            segments.append(name)

        return FieldPath(tuple(segments))

    def parse_quantifier(self, kind: str, path: FieldPath, null_safe: bool) -> Quantifier:
        self.expect("(")
        param = self.expect_ident()
        self.expect("=>")
        bound = self.expect_ident()
        if bound != param:
            raise ExpressionSyntaxError(f"Unknown variable {bound!r} in {kind}()")
        self.expect(".")
        item_field = self.expect_ident()
        token = self.advance()
        if token.kind != "OP" or token.text not in COMPARISON_OPS:
            raise ExpressionSyntaxError(f"Expected comparison in {kind}(), got {token.text!r}")
        literal = self.parse_literal()
        self.expect(")")
        return Quantifier(kind, path, null_safe, item_field, token.text, literal)

    def parse_literal(self) -> Literal:
        token = self.advance()
        if token.kind == "STRING":
            return Literal(token.text[1:-1])
        if token.kind == "NUMBER":
            text = token.text
            return Literal(float(text) if "." in text else int(text))
        if token.kind == "IDENT":
            keywords = {"true": True, "false": False, "null": None, "undefined": MISSING}
            if token.text in keywords:
                return Literal(keywords[token.text])
        raise ExpressionSyntaxError(f"Expected literal, got {token.text!r} at {token.pos}")


@lru_cache(maxsize=256)
def parse_expression(text: str) -> Node:
    """
    Parse a condition into its AST.

    Raises:
        ExpressionSyntaxError: If the condition is outside the grammar
    """
    return _Parser(tokenize(text.strip())).parse()


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def _resolve(state: Mapping[str, Any], path: FieldPath) -> Any:
    value: Any = state
    for segment in path.segments:
        if isinstance(value, Mapping):
            value = value.get(segment, MISSING)
        else:
            return MISSING
        if value is MISSING:
            return MISSING
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_truthy(value: Any) -> bool:
    """JavaScript truthiness: empty lists and objects are truthy."""
    if value is MISSING or value is None or value is False:
        return False
    if _is_number(value):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def compare_values(left: Any, op: str, right: Any) -> bool:
    """Compare a resolved value against a literal."""
    if op in EQUALITY_OPS:
        loose = op in ("==", "!=")
        if right is None or right is MISSING:
            if loose:
                equal = left is None or left is MISSING
            else:
                equal = left is right
        elif left is MISSING:
            equal = False
        else:
            equal = to_display_string(left) == to_display_string(right)
        return not equal if op.startswith("!") else equal

    if not (_is_number(left) and _is_number(right)):
        return False
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    return False


def _value(node: Node, state: Mapping[str, Any]) -> Any:
    if isinstance(node, FieldPath):
        return _resolve(state, node)

    if isinstance(node, Length):
        target = _resolve(state, node.path)
        return len(target) if isinstance(target, (list, str)) else 0

    if isinstance(node, Quantifier):
        items = _resolve(state, node.path)
        if not isinstance(items, list):
            return node.null_safe and node.kind == "every"
        checks = (
            compare_values(
                item.get(node.item_field, MISSING) if isinstance(item, Mapping) else MISSING,
                node.op,
                node.literal.value,
            )
            for item in items
        )
        return all(checks) if node.kind == "every" else any(checks)

    if isinstance(node, Compare):
        return compare_values(_value(node.left, state), node.op, node.right.value)

    if isinstance(node, Not):
        return not is_truthy(_value(node.operand, state))

    if isinstance(node, And):
        return is_truthy(_value(node.left, state)) and is_truthy(_value(node.right, state))

    if isinstance(node, Or):
        return is_truthy(_value(node.left, state)) or is_truthy(_value(node.right, state))

    raise ExpressionSyntaxError(f"Unknown node: {node!r}")


def evaluate_node(node: Node, state: Mapping[str, Any]) -> bool:
    """Evaluate a parsed condition to a boolean."""
    return is_truthy(_value(node, state))


def evaluate_expression(text: str, state: Mapping[str, Any]) -> bool:
    """
    Evaluate a condition string against the state.

    Conditions outside the grammar evaluate to False and log a warning;
    this never raises.
    """
    try:
        node = parse_expression(text)
    except ExpressionSyntaxError as e:
        logger.warning(f"Unsupported gate expression: {text!r} ({e})")
        return False
    return evaluate_node(node, state)
