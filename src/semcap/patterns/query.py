"""
Parser for rule definitions written in tree-sitter query syntax.

A definition file is a sequence of top-level S-expression patterns. Each
top-level pattern becomes one rule; predicate calls such as
``(#match? @_kw "^def")`` may appear anywhere inside it and are hoisted to
the rule.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional, Tuple, Union

from ..exceptions import ConfigError

QUANTIFIERS = ("?", "*", "+")

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<comment>;[^\n]*)
  | (?P<string>"(?:[^"\\]|\\.)*")
  | (?P<predicate>\#[A-Za-z_][A-Za-z0-9_\-]*[?!]?)
  | (?P<capture>@[A-Za-z_][A-Za-z0-9_.\-]*)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_\-]*(?:/[A-Za-z_][A-Za-z0-9_\-]*)?)
  | (?P<punct>[()\[\]:.!?*+])
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", '"': '"'}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    position: int


@dataclass(frozen=True)
class NodePattern:
    """Matches a single node.

    ``kind`` is ``"named"`` for ``(type ...)``, ``"any_named"`` for ``(_)``,
    ``"any"`` for a bare ``_`` and ``"literal"`` for an anonymous ``"text"``
    node.
    """

    kind: str
    type: Optional[str] = None
    children: Tuple["ChildItem", ...] = ()
    negated_fields: Tuple[str, ...] = ()
    trailing_anchor: bool = False
    captures: Tuple[str, ...] = ()

    def accepts(self, node_type: str, is_named: bool) -> bool:
        if self.kind == "any":
            return True
        if self.kind == "any_named":
            return is_named
        if self.kind == "literal":
            return not is_named and node_type == self.type
        return is_named and node_type == self.type


@dataclass(frozen=True)
class AlternationPattern:
    """Matches a single node against the first alternative that fits."""

    alternatives: Tuple["Pattern", ...]
    captures: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GroupPattern:
    """Matches a sequence of sibling nodes."""

    items: Tuple["ChildItem", ...]
    trailing_anchor: bool = False
    captures: Tuple[str, ...] = ()


Pattern = Union[NodePattern, AlternationPattern, GroupPattern]


@dataclass(frozen=True)
class ChildItem:
    pattern: Pattern
    field: Optional[str] = None
    quantifier: str = ""
    anchored: bool = False


@dataclass(frozen=True)
class PredicateArg:
    kind: str  # "capture" or "string"
    value: str


@dataclass(frozen=True)
class PredicateCall:
    name: str
    args: Tuple[PredicateArg, ...]
    position: int


@dataclass(frozen=True)
class ParsedPattern:
    pattern: Pattern
    predicates: Tuple[PredicateCall, ...]
    position: int


def _unescape(raw: str) -> str:
    body = raw[1:-1]
    out: List[str] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\" and index + 1 < len(body):
            nxt = body[index + 1]
            out.append(_ESCAPES.get(nxt, "\\" + nxt))
            index += 2
            continue
        out.append(char)
        index += 1
    return "".join(out)


def tokenize(text: str) -> Iterator[Token]:
    position = 0
    length = len(text)
    while position < length:
        match = _TOKEN_RE.match(text, position)
        if match is None:
            raise ConfigError(f"Unexpected character {text[position]!r} in query", position=position)
        kind = match.lastgroup or ""
        value = match.group()
        if kind not in {"ws", "comment"}:
            yield Token(kind, value, position)
        position = match.end()


def iter_captures(pattern: Pattern) -> Iterator[str]:
    """Yield every capture name bound anywhere inside ``pattern``."""
    yield from pattern.captures
    if isinstance(pattern, NodePattern):
        for item in pattern.children:
            yield from iter_captures(item.pattern)
    elif isinstance(pattern, AlternationPattern):
        for alternative in pattern.alternatives:
            yield from iter_captures(alternative)
    else:
        for item in pattern.items:
            yield from iter_captures(item.pattern)


def root_types(pattern: Pattern) -> Optional[Tuple[str, ...]]:
    """Node types a root pattern can start on, or ``None`` for any type."""
    if isinstance(pattern, NodePattern):
        if pattern.kind in {"named", "literal"} and pattern.type is not None:
            return (pattern.type,)
        return None
    if isinstance(pattern, AlternationPattern):
        types: List[str] = []
        for alternative in pattern.alternatives:
            nested = root_types(alternative)
            if nested is None:
                return None
            types.extend(nested)
        return tuple(dict.fromkeys(types))
    return None


class QueryParser:
    """Recursive-descent parser producing one ``ParsedPattern`` per rule."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = list(tokenize(text))
        self.index = 0
        self._predicates: List[PredicateCall] = []

    # token helpers -------------------------------------------------------

    def _peek(self, offset: int = 0) -> Optional[Token]:
        index = self.index + offset
        return self.tokens[index] if index < len(self.tokens) else None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise ConfigError("Unexpected end of query", position=len(self.text))
        self.index += 1
        return token

    def _position(self) -> int:
        token = self._peek()
        return token.position if token is not None else len(self.text)

    def _is_punct(self, value: str, offset: int = 0) -> bool:
        token = self._peek(offset)
        return token is not None and token.kind == "punct" and token.value == value

    def _expect_punct(self, value: str) -> Token:
        token = self._next()
        if token.kind != "punct" or token.value != value:
            raise ConfigError(f"Expected {value!r}, found {token.value!r}", position=token.position)
        return token

    # grammar ---------------------------------------------------------------

    def parse(self) -> List[ParsedPattern]:
        patterns: List[ParsedPattern] = []
        start = self._peek()
        while start is not None:
            follower = self._peek(1)
            if self._is_punct("(") and follower is not None and follower.kind == "predicate":
                raise ConfigError("Predicate outside of a pattern", position=start.position)
            self._predicates = []
            atom = self._parse_atom()
            quantifier = self._parse_quantifier()
            pattern = self._with_captures(atom)
            if quantifier:
                # a quantified top-level pattern is a one-item sibling sequence
                pattern = GroupPattern(items=(ChildItem(pattern, quantifier=quantifier),))
            patterns.append(ParsedPattern(pattern, tuple(self._predicates), start.position))
            start = self._peek()
        return patterns

    def _parse_expression(self) -> Pattern:
        pattern = self._parse_atom()
        return self._with_captures(pattern)

    def _with_captures(self, pattern: Pattern) -> Pattern:
        captures: List[str] = []
        token = self._peek()
        while token is not None and token.kind == "capture":
            self.index += 1
            captures.append(token.value[1:])
            token = self._peek()
        if not captures:
            return pattern
        if isinstance(pattern, GroupPattern):
            raise ConfigError("Captures on sibling groups are not supported", position=self._position())
        return replace(pattern, captures=tuple(pattern.captures) + tuple(captures))

    def _parse_quantifier(self) -> str:
        token = self._peek()
        if token is not None and token.kind == "punct" and token.value in QUANTIFIERS:
            self.index += 1
            return token.value
        return ""

    def _parse_atom(self) -> Pattern:
        token = self._next()
        if token.kind == "string":
            return NodePattern(kind="literal", type=_unescape(token.value))
        if token.kind == "ident" and token.value == "_":
            return NodePattern(kind="any")
        if token.kind == "punct" and token.value == "[":
            return self._parse_alternation(token)
        if token.kind == "punct" and token.value == "(":
            return self._parse_parenthesized(token)
        raise ConfigError(f"Unexpected token {token.value!r}", position=token.position)

    def _parse_alternation(self, opening: Token) -> AlternationPattern:
        alternatives: List[Pattern] = []
        while not self._is_punct("]"):
            if self._peek() is None:
                raise ConfigError("Unterminated alternation", position=opening.position)
            alternative = self._parse_expression()
            if isinstance(alternative, GroupPattern):
                raise ConfigError("Sibling groups cannot be alternatives", position=opening.position)
            alternatives.append(alternative)
        self._expect_punct("]")
        if not alternatives:
            raise ConfigError("Empty alternation", position=opening.position)
        return AlternationPattern(tuple(alternatives))

    def _parse_parenthesized(self, opening: Token) -> Pattern:
        token = self._peek()
        if token is None:
            raise ConfigError("Unterminated pattern", position=opening.position)
        if token.kind == "ident":
            self.index += 1
            kind = "any_named" if token.value == "_" else "named"
            node_type = None if token.value == "_" else token.value.split("/")[-1]
            items, negated, trailing = self._parse_children(opening)
            return NodePattern(
                kind=kind,
                type=node_type,
                children=items,
                negated_fields=negated,
                trailing_anchor=trailing,
            )
        items, negated, trailing = self._parse_children(opening)
        if negated:
            raise ConfigError("Negated fields require a node type", position=opening.position)
        if not items:
            raise ConfigError("Empty pattern", position=opening.position)
        if len(items) == 1 and not trailing:
            only = items[0]
            # ((node) @cap (#pred? ...)) wraps a single node, not a sibling sequence
            if only.field is None and not only.quantifier and not only.anchored:
                return only.pattern
        return GroupPattern(items=items, trailing_anchor=trailing)

    def _parse_children(
        self, opening: Token
    ) -> Tuple[Tuple[ChildItem, ...], Tuple[str, ...], bool]:
        items: List[ChildItem] = []
        negated: List[str] = []
        anchored = False
        trailing = False
        while True:
            token = self._peek()
            if token is None:
                raise ConfigError("Unterminated pattern", position=opening.position)
            if token.kind == "punct" and token.value == ")":
                self.index += 1
                trailing = anchored
                break
            if token.kind == "punct" and token.value == ".":
                self.index += 1
                anchored = True
                continue
            if token.kind == "punct" and token.value == "!":
                self.index += 1
                field_token = self._next()
                if field_token.kind != "ident":
                    raise ConfigError("Expected field name after '!'", position=field_token.position)
                negated.append(field_token.value)
                continue
            if token.kind == "punct" and token.value == "(":
                nxt = self._peek(1)
                if nxt is not None and nxt.kind == "predicate":
                    self.index += 1
                    self._parse_predicate(token)
                    continue
            field_name: Optional[str] = None
            if token.kind == "ident" and token.value != "_" and self._is_punct(":", 1):
                field_name = token.value
                self.index += 2
            pattern = self._parse_atom()
            quantifier = self._parse_quantifier()
            pattern = self._with_captures(pattern)
            items.append(ChildItem(pattern, field_name, quantifier, anchored))
            anchored = False
        return tuple(items), tuple(negated), trailing

    def _parse_predicate(self, opening: Token) -> None:
        name_token = self._next()
        name = name_token.value[1:]
        args: List[PredicateArg] = []
        while not self._is_punct(")"):
            token = self._next()
            if token.kind == "capture":
                args.append(PredicateArg("capture", token.value[1:]))
            elif token.kind == "string":
                args.append(PredicateArg("string", _unescape(token.value)))
            elif token.kind == "ident":
                args.append(PredicateArg("string", token.value))
            else:
                raise ConfigError(
                    f"Unexpected token {token.value!r} in predicate #{name}",
                    position=token.position,
                )
        self._expect_punct(")")
        self._predicates.append(PredicateCall(name, tuple(args), opening.position))


def parse_query(text: str) -> List[ParsedPattern]:
    """Parse query source text into top-level patterns in declaration order."""
    return QueryParser(text).parse()
