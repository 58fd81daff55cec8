"""Erlang term file reader.

Reads files of dot-terminated Erlang terms, the format of ``.app`` and
``.app.src`` descriptors, the way ``file:consult/1`` does. Parsing is done
with a lark LALR grammar; the transformer maps terms to Python values:

    atom, 'quoted atom'    -> Atom (a str subclass)
    "string" "concat"      -> str
    $c                     -> int
    42, 16#ff, 1_000       -> int
    1.5e3                  -> float
    {a, b}                 -> tuple
    [a, b], [a | b]        -> list, ImproperList
    <<"bin", 1>>           -> bytes
    #{k => v}              -> dict

Variables are rejected, as consulting a file never binds anything.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

from lark import Lark, Transformer
from lark.exceptions import UnexpectedInput, VisitError

logger = logging.getLogger(__name__)

TERM_GRAMMAR = r"""
start: (term _DOT)*

?term: atom
     | var
     | strings
     | char
     | number
     | tuple_term
     | list_term
     | binary_term
     | map_term

atom: ATOM | QUOTED_ATOM
var: VAR
strings: STRING+
char: CHAR
number: [SIGN] (INT | FLOAT)

tuple_term: "{" (term ("," term)*)? "}"
list_term: "[" (term ("," term)* tail?)? "]"
tail: "|" term
binary_term: "<<" (segment ("," segment)*)? ">>"
?segment: strings | number | char
map_term: "#{" (assoc ("," assoc)*)? "}"
assoc: term "=>" term

_DOT: /\.(?=[\s%]|$)/
SIGN: "-" | "+"
ATOM: /[a-z][A-Za-z0-9_@]*/
QUOTED_ATOM: /'(?:[^'\\]|\\.)*'/s
VAR: /[A-Z_][A-Za-z0-9_@]*/
STRING: /"(?:[^"\\]|\\.)*"/s
CHAR: /\$(?:\\(?:\^.|[0-7]{1,3}|x\{[0-9a-fA-F]+\}|x[0-9a-fA-F]{2}|.)|[^\\])/s
FLOAT: /\d[\d_]*\.\d[\d_]*(?:[eE][+-]?\d+)?/
INT: /\d[\d_]*(?:#[0-9a-zA-Z][0-9a-zA-Z_]*)?/
COMMENT: /%[^\n]*/

%import common.WS
%ignore WS
%ignore COMMENT
"""

_ESCAPE_RE = re.compile(r"\\(\^.|[0-7]{1,3}|x\{[0-9a-fA-F]+\}|x[0-9a-fA-F]{2}|.)", re.DOTALL)

_SIMPLE_ESCAPES = {
    "b": "\b",
    "d": "\x7f",
    "e": "\x1b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "s": " ",
    "t": "\t",
    "v": "\v",
}


class DescriptorParseError(Exception):
    """Raised when a term file cannot be consulted."""

    def __init__(self, path: Optional[Path], message: str):
        location = str(path) if path is not None else "<string>"
        super().__init__(f"{location}: {message}")
        self.path = path


class Atom(str):
    """An Erlang atom; compares equal to its name."""

    def __repr__(self) -> str:
        return f"Atom({str.__repr__(self)})"


@dataclass(frozen=True)
class ImproperList:
    """A list whose tail is not ``[]``, e.g. ``[a | b]``."""

    items: tuple[Any, ...]
    tail: Any


@dataclass(frozen=True)
class _Tail:
    value: Any


def unescape(text: str) -> str:
    """Resolve Erlang escape sequences inside a quoted string or atom body."""

    def replace(match: re.Match) -> str:
        escape = match.group(1)
        if escape.startswith("^"):
            return chr(ord(escape[1]) % 32)
        if escape[0] in "01234567":
            return chr(int(escape, 8))
        if escape.startswith("x{"):
            return chr(int(escape[2:-1], 16))
        if escape.startswith("x") and len(escape) == 3:
            return chr(int(escape[1:], 16))
        return _SIMPLE_ESCAPES.get(escape, escape)

    return _ESCAPE_RE.sub(replace, text)


def _parse_integer(text: str) -> int:
    text = text.replace("_", "")
    if "#" in text:
        base_text, digits = text.split("#", 1)
        base = int(base_text)
        if not 2 <= base <= 36:
            raise ValueError(f"integer base {base} out of range")
        return int(digits, base)
    return int(text)


class TermTransformer(Transformer):
    """Turns the parse tree into Python values."""

    def start(self, items):
        return list(items)

    def atom(self, items):
        token = items[0]
        if token.type == "QUOTED_ATOM":
            return Atom(unescape(token[1:-1]))
        return Atom(str(token))

    def var(self, items):
        raise ValueError(f"variable '{items[0]}' is unbound")

    def strings(self, items):
        return "".join(unescape(token[1:-1]) for token in items)

    def char(self, items):
        body = items[0][1:]
        return ord(unescape(body) if body.startswith("\\") else body)

    def number(self, items):
        sign, token = items
        value = float(token.replace("_", "")) if token.type == "FLOAT" else _parse_integer(token)
        return -value if sign == "-" else value

    def tuple_term(self, items):
        return tuple(items)

    def tail(self, items):
        return _Tail(items[0])

    def list_term(self, items):
        if items and isinstance(items[-1], _Tail):
            tail = items[-1].value
            head = items[:-1]
            if isinstance(tail, list):
                return head + tail
            return ImproperList(tuple(head), tail)
        return list(items)

    def binary_term(self, items):
        data = bytearray()
        for segment in items:
            if isinstance(segment, str):
                data.extend(segment.encode("latin-1", errors="strict"))
            elif isinstance(segment, int) and not isinstance(segment, bool):
                data.append(segment & 0xFF)
            else:
                raise ValueError(f"unsupported binary segment {segment!r}")
        return bytes(data)

    def assoc(self, items):
        return (items[0], items[1])

    def map_term(self, items):
        result = {}
        for key, value in items:
            try:
                result[key] = value
            except TypeError as e:
                raise ValueError(f"map key {key!r} is not supported") from e
        return result


_parser: Optional[Lark] = None


def _get_parser() -> Lark:
    global _parser
    if _parser is None:
        _parser = Lark(TERM_GRAMMAR, parser="lalr", maybe_placeholders=True)
    return _parser


def parse_terms(text: str, path: Optional[Path] = None) -> list[Any]:
    """Parse dot-terminated terms from text.

    Raises:
        DescriptorParseError: On syntax errors, unbound variables or malformed literals
    """
    try:
        tree = _get_parser().parse(text)
    except UnexpectedInput as e:
        raise DescriptorParseError(path, f"line {e.line}, column {e.column}: syntax error") from e
    try:
        return TermTransformer().transform(tree)
    except VisitError as e:
        raise DescriptorParseError(path, str(e.orig_exc)) from e


def _decode(data: bytes) -> str:
    # file:consult/1 reads UTF-8 unless told otherwise; old files are Latin-1
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def consult(path: Path) -> list[Any]:
    """Read every term in a file.

    Raises:
        FileNotFoundError: If the file does not exist
        DescriptorParseError: If the file is not a valid term file
    """
    return parse_terms(_decode(path.read_bytes()), path)


class DescriptorParser(Protocol):
    """Anything that can consult a term file."""

    def consult(self, path: Path) -> list[Any]: ...


class TermConsulter:
    """DescriptorParser backed by the lark term grammar."""

    def consult(self, path: Path) -> list[Any]:
        return consult(path)


@dataclass(frozen=True)
class Descriptor:
    """A parsed ``{application, Name, Properties}.`` descriptor.

    Attributes:
        name: Application name
        properties: Property list entries as a mapping; later keys win
    """

    name: str
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def version(self) -> Optional[str]:
        """The vsn property when it is a plain non-empty string."""
        value = self.properties.get("vsn")
        if isinstance(value, str) and not isinstance(value, Atom) and value:
            return value
        return None

    @property
    def modules(self) -> list[str]:
        value = self.properties.get("modules", [])
        if not isinstance(value, list):
            return []
        return [str(module) for module in value]


def read_descriptor(path: Path, parser: Optional[DescriptorParser] = None) -> Descriptor:
    """Consult a descriptor file and check its shape.

    Raises:
        FileNotFoundError: If the file does not exist
        DescriptorParseError: If the file does not hold exactly one application term
    """
    terms = (parser or TermConsulter()).consult(path)
    if len(terms) != 1:
        raise DescriptorParseError(path, f"expected one term, found {len(terms)}")
    term = terms[0]
    if not (isinstance(term, tuple) and len(term) == 3 and term[0] == "application" and isinstance(term[1], Atom)):
        raise DescriptorParseError(path, "expected {application, Name, Properties}")
    if not isinstance(term[2], list):
        raise DescriptorParseError(path, "application properties must be a list")

    properties: dict[str, Any] = {}
    for entry in term[2]:
        if isinstance(entry, tuple) and len(entry) == 2 and isinstance(entry[0], Atom):
            properties[str(entry[0])] = entry[1]
        else:
            logger.debug("%s: ignoring property %r", path, entry)
    return Descriptor(name=str(term[1]), properties=properties)
