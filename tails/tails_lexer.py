"""
Turns Tails source text into a flat list of tokens.

The lexer is line oriented: newlines are significant and produce NEWLINE
tokens, while other whitespace and `#` comments are dropped.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional

from tails.tails_datatypes import LexError

# Token kinds
VARIABLE = 'VARIABLE'
IDENT = 'IDENT'
NUMBER = 'NUMBER'
STRING = 'STRING'
KEYWORD = 'KEYWORD'
OP = 'OP'
PUNCT = 'PUNCT'
NEWLINE = 'NEWLINE'
EOF = 'EOF'

KEYWORDS = frozenset({
    'is', 'if', 'else', 'loop', 'break-loop', 'for-each', 'in',
    'attempt', 'rescue', 'action', 'function', 'give', 'up', 'down',
    'and', 'or', 'not', 'true', 'false', 'null',
})

OPERATORS = ('==', '!=', '<=', '>=', '+', '-', '*', '/', '\\', '%', '<', '>')
PUNCTUATION = '(){}[],:.|'

ESCAPES = {
    'n': '\n',
    't': '\t',
    'r': '\r',
    '\\': '\\',
    '"': '"',
    "'": "'",
    '`': '`',
    '0': '\0',
}


@dataclass
class Token:
    kind: str
    text: str
    value: Any = None
    line: int = 0
    col: int = 0
    # True for `*name` explicit calls
    explicit: bool = False
    # Only set on NUMBER tokens
    had_decimal_point: bool = False

    def loc(self) -> dict:
        return {'line': self.line, 'col': self.col, 'text': self.text}

    def __repr__(self):
        return f"Token({self.kind}, {self.text!r}, {self.line}:{self.col})"


@dataclass
class Interpolation:
    """A backtick span inside a string: `~name.path.to.value`."""
    name: str
    path: List[str] = field(default_factory=list)


def _is_name_start(ch: str) -> bool:
    return ch.isalpha() or ch == '_'


def _is_name_char(ch: str) -> bool:
    return ch.isalnum() or ch in '-_'


class Lexer:
    """Single-use scanner over one source string."""

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.line = 1
        self.col = 1
        self.tokens: List[Token] = []
        self._string_start = 0

    # --- character helpers ---

    def _peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.source[i] if i < len(self.source) else ''

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        if ch == '\n':
            self.line += 1
            self.col = 1
        else:
            self.col += 1
        return ch

    def _error(self, message: str, line: Optional[int] = None, col: Optional[int] = None):
        raise LexError(message, line or self.line, col or self.col)

    def _last_is_value(self) -> bool:
        """True when the previous token ends an operand (so '-' is binary)."""
        if not self.tokens:
            return False
        t = self.tokens[-1]
        if t.kind in (NUMBER, STRING, VARIABLE):
            return True
        if t.kind == PUNCT and t.text in ')]}':
            return True
        if t.kind == KEYWORD and t.text in ('true', 'false', 'null'):
            return True
        return False

    def _emit(self, kind: str, text: str, line: int, col: int, **kw) -> Token:
        tok = Token(kind, text, line=line, col=col, **kw)
        self.tokens.append(tok)
        return tok

    # --- scanners ---

    def _read_name(self) -> str:
        start = self.pos
        while self.pos < len(self.source) and _is_name_char(self.source[self.pos]):
            self._advance()
        return self.source[start:self.pos]

    def _read_number(self, line: int, col: int, negative: bool = False):
        start = self.pos
        while self._peek().isdigit():
            self._advance()
        had_decimal = False
        # After a '.' property access only whole indices are allowed: ~xs.0.1
        after_dot = bool(self.tokens) and self.tokens[-1].kind == PUNCT and self.tokens[-1].text == '.'
        if not after_dot and self._peek() == '.' and self._peek(1).isdigit():
            had_decimal = True
            self._advance()
            while self._peek().isdigit():
                self._advance()
        text = self.source[start:self.pos]
        value = float(text)
        if negative:
            value = -value
            text = '-' + text
        self._emit(NUMBER, text, line, col, had_decimal_point=had_decimal).value = value

    def _read_string(self, line: int, col: int):
        self._advance()  # opening quote
        parts: list = []
        buf: List[str] = []
        while True:
            if self.pos >= len(self.source):
                self._error("Unterminated string literal", line, col)
            ch = self._peek()
            if ch == '"':
                self._advance()
                break
            if ch == '\\':
                self._advance()
                if self.pos >= len(self.source):
                    self._error("Unterminated string literal", line, col)
                esc = self._advance()
                buf.append(ESCAPES.get(esc, '\\' + esc))
                continue
            if ch == '`':
                if buf:
                    parts.append(''.join(buf))
                    buf = []
                parts.append(self._read_interpolation(line, col))
                continue
            buf.append(self._advance())
        if buf or not parts:
            parts.append(''.join(buf))
        text = self.source[self._string_start:self.pos]
        self._emit(STRING, text, line, col).value = parts

    def _read_interpolation(self, line: int, col: int):
        span_line, span_col = self.line, self.col
        self._advance()  # opening backtick
        if self._peek() != '~' or not _is_name_start(self._peek(1)):
            self._error("Expected ~variable inside string interpolation", span_line, span_col)
        self._advance()
        name = self._read_name()
        path: List[str] = []
        while self._peek() == '.':
            self._advance()
            seg = self._read_name()
            if not seg:
                self._error("Expected property name after '.' in interpolation", self.line, self.col)
            path.append(seg)
        if self._peek() != '`':
            if self.pos >= len(self.source):
                self._error("Unterminated string literal", line, col)
            self._error(f"Expected closing backtick, got '{self._peek()}'")
        self._advance()
        return Interpolation(name, path)

    def tokenize(self) -> List[Token]:
        src = self.source
        while self.pos < len(src):
            ch = self._peek()
            line, col = self.line, self.col

            if ch == '\n':
                self._advance()
                # Collapse blank lines
                if not self.tokens or self.tokens[-1].kind != NEWLINE:
                    self._emit(NEWLINE, '\n', line, col)
                continue
            if ch in ' \t\r':
                self._advance()
                continue
            if ch == '#':
                while self.pos < len(src) and self._peek() != '\n':
                    self._advance()
                continue

            if ch == '~':
                if not _is_name_start(self._peek(1)):
                    self._error("Illegal character '~' (expected a variable name)", line, col)
                self._advance()
                name = self._read_name()
                self._emit(VARIABLE, '~' + name, line, col).value = name
                continue

            if ch.isdigit():
                self._read_number(line, col)
                continue

            if ch == '"':
                self._string_start = self.pos
                self._read_string(line, col)
                continue

            if _is_name_start(ch):
                name = self._read_name()
                kind = KEYWORD if name in KEYWORDS else IDENT
                self._emit(kind, name, line, col).value = name
                continue

            if ch == '*' and _is_name_start(self._peek(1)):
                self._advance()
                name = self._read_name()
                self._emit(IDENT, '*' + name, line, col, explicit=True).value = name
                continue

            # `-5` is a literal unless it directly follows an operand (`~a-5`)
            spaced = self.pos > 0 and src[self.pos - 1] in ' \t\n'
            if ch == '-' and self._peek(1).isdigit() and (spaced or not self._last_is_value()):
                self._advance()
                self._read_number(line, col, negative=True)
                continue

            op = next((o for o in OPERATORS if src.startswith(o, self.pos)), None)
            if op is not None:
                for _ in op:
                    self._advance()
                self._emit(OP, op, line, col)
                continue

            if ch in PUNCTUATION:
                self._advance()
                self._emit(PUNCT, ch, line, col)
                continue

            self._error(f"Illegal character '{ch}'", line, col)

        self._emit(EOF, '', self.line, self.col)
        return self.tokens


def tokenize(source: str) -> List[Token]:
    """Lex a whole source string. Raises LexError on bad input."""
    return Lexer(source).tokenize()
