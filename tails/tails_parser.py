"""
Recursive-descent parser for Tails.

Statements are parsed by hand; binary expressions use precedence climbing
over a fixed table (lowest first):

    or < and < equality < relational < additive < multiplicative < unary < postfix

There is no error recovery: the first structural violation raises a
ParseError naming what was expected.
"""
from typing import List, Optional

from tails.tails_datatypes import ParseError
from tails.tails_lexer import (
    Token, Interpolation, tokenize,
    VARIABLE, IDENT, NUMBER, STRING, KEYWORD, OP, PUNCT, NEWLINE, EOF,
)
from tails import tails_ast as ast

# Binary precedence levels, lowest to highest
BINARY_LEVELS = (
    ('or',),
    ('and',),
    ('==', '!='),
    ('<', '>', '<=', '>='),
    ('+', '-'),
    ('*', '/', '\\', '%'),
)

VALUE_KEYWORDS = ('true', 'false', 'null')


def describe(tok: Token) -> str:
    if tok.kind == EOF:
        return "end of input"
    if tok.kind == NEWLINE:
        return "end of line"
    return repr(tok.text)


class Parser:
    """Parses one token list into a Program."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        # Set while parsing an `if` condition or a `for-each` iterable so that
        # a following `( body )` is not taken as a call argument.
        self.no_paren_args = False

    # --- token helpers ---

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 1) -> Token:
        i = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[i]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != EOF:
            self.pos += 1
        return tok

    def check(self, kind: str, text: Optional[str] = None) -> bool:
        tok = self.current
        return tok.kind == kind and (text is None or tok.text == text)

    def check_punct(self, text: str) -> bool:
        return self.check(PUNCT, text)

    def check_keyword(self, text: str) -> bool:
        return self.check(KEYWORD, text)

    def error(self, expected: str, tok: Optional[Token] = None):
        tok = tok or self.current
        raise ParseError(f"Expected {expected}, got {describe(tok)}", tok.line, tok.col)

    def expect(self, kind: str, text: Optional[str] = None, what: Optional[str] = None) -> Token:
        if not self.check(kind, text):
            self.error(what or (repr(text) if text else kind.lower()))
        return self.advance()

    def skip_newlines(self):
        while self.current.kind == NEWLINE:
            self.advance()

    # --- program / statements ---

    def parse_program(self) -> ast.Program:
        statements = []
        self.skip_newlines()
        while self.current.kind != EOF:
            statements.append(self.parse_statement())
            self.skip_newlines()
        return ast.Program(statements)

    def parse_body(self) -> List:
        """`( stmt* )` with statements separated by newlines."""
        self.expect(PUNCT, '(', "'(' to open a block")
        saved, self.no_paren_args = self.no_paren_args, False
        statements = []
        self.skip_newlines()
        while not self.check_punct(')'):
            if self.current.kind == EOF:
                self.error("')' to close a block")
            statements.append(self.parse_statement())
            self.skip_newlines()
        self.advance()
        self.no_paren_args = saved
        return statements

    def parse_statement(self):
        tok = self.current
        loc = tok.loc()

        if tok.kind == VARIABLE:
            nxt = self.peek()
            if nxt.kind == KEYWORD and nxt.text == 'is':
                self.advance()
                self.advance()
                return ast.Assignment(tok.value, self.parse_expression(), loc=loc)
            if nxt.kind == KEYWORD and nxt.text in ('up', 'down'):
                self.advance()
                self.advance()
                return ast.IncDec(tok.value, nxt.text, self.parse_expression(), loc=loc)
            if nxt.kind == PUNCT and nxt.text == ':':
                return self.parse_function_chain()

        if tok.kind == KEYWORD:
            if tok.text == 'if':
                return self.parse_if()
            if tok.text == 'loop':
                self.advance()
                return ast.Loop(self.parse_body(), loc=loc)
            if tok.text == 'break-loop':
                self.advance()
                return ast.Break(loc=loc)
            if tok.text == 'for-each':
                return self.parse_for_each()
            if tok.text == 'attempt':
                return self.parse_attempt()
            if tok.text in ('action', 'function'):
                return self.parse_action()
            if tok.text == 'give':
                self.advance()
                if self.current.kind in (NEWLINE, EOF) or self.check_punct(')'):
                    return ast.Give(ast.Null(loc=loc), loc=loc)
                return ast.Give(self.parse_expression(), loc=loc)

        expr = self.parse_expression()
        # `~obj.key is value`
        if self.check_keyword('is'):
            path = self._assignment_path(expr)
            if path is None:
                self.error("end of statement")
            self.advance()
            name, keys = path
            return ast.PropertyAssignment(name, keys, self.parse_expression(), loc=loc)
        return ast.ExpressionStatement(expr, loc=loc)

    def _assignment_path(self, expr):
        keys = []
        while isinstance(expr, ast.PropertyAccess):
            keys.append(expr.key)
            expr = expr.base
        if not keys or not isinstance(expr, ast.Variable):
            return None
        return expr.name, list(reversed(keys))

    def parse_if(self):
        loc = self.advance().loc()
        cond = self.parse_condition()
        then = self.parse_body()
        else_ = None
        # `else` may sit on the next line
        save = self.pos
        self.skip_newlines()
        if self.check_keyword('else'):
            self.advance()
            if self.check_keyword('if'):
                else_ = [self.parse_if()]
            else:
                else_ = self.parse_body()
        else:
            self.pos = save
        return ast.If(cond, then, else_, loc=loc)

    def parse_condition(self):
        saved, self.no_paren_args = self.no_paren_args, True
        try:
            return self.parse_expression()
        finally:
            self.no_paren_args = saved

    def parse_for_each(self):
        loc = self.advance().loc()
        names = []
        while self.current.kind == VARIABLE:
            names.append(self.advance().value)
        if not names:
            self.error("a ~variable after for-each")
        if len(names) > 2:
            raise ParseError("for-each expects at most 2 variables", loc['line'], loc['col'])
        self.expect(KEYWORD, 'in', "'in'")
        iterable = self.parse_condition()
        body = self.parse_body()
        return ast.ForEach(names, iterable, body, loc=loc)

    def parse_attempt(self):
        loc = self.advance().loc()
        body = self.parse_body()
        self.skip_newlines()
        self.expect(KEYWORD, 'rescue', "'rescue'")
        error_var = None
        if self.current.kind == VARIABLE:
            error_var = self.advance().value
        rescue_body = self.parse_body()
        return ast.Attempt(body, error_var, rescue_body, loc=loc)

    def parse_action(self):
        loc = self.advance().loc()
        if self.current.kind != IDENT or self.current.explicit:
            self.error("an action name")
        name = self.advance().value
        params = []
        while self.current.kind == VARIABLE:
            params.append(self.advance().value)
        body = self.parse_body()
        return ast.ActionDef(name, params, body, loc=loc)

    def parse_function_chain(self):
        var_tok = self.advance()
        self.advance()  # ':'
        steps = []
        if self.current.kind not in (NEWLINE, EOF):
            steps.append(self.parse_chain_step())
        # Step lines are indented deeper than the chain variable
        while self.current.kind == NEWLINE:
            nxt = self.peek()
            if nxt.kind != IDENT or nxt.col <= var_tok.col:
                break
            self.advance()
            steps.append(self.parse_chain_step())
        if not steps:
            self.error("a function step after ':'")
        return ast.FunctionChain(var_tok.value, steps, loc=var_tok.loc())

    def parse_chain_step(self):
        tok = self.current
        if tok.kind != IDENT:
            self.error("a function name in chain step")
        self.advance()
        return ast.ChainStep(tok.value, self.parse_call_args(), loc=tok.loc())

    # --- expressions ---

    def parse_expression(self):
        return self.parse_binary(0)

    def parse_binary(self, level: int):
        if level >= len(BINARY_LEVELS):
            return self.parse_unary()
        ops = BINARY_LEVELS[level]
        lhs = self.parse_binary(level + 1)
        while True:
            tok = self.current
            is_op = (tok.kind == OP and tok.text in ops) or \
                    (tok.kind == KEYWORD and tok.text in ops)
            if is_op:
                self.advance()
                rhs = self.parse_binary(level + 1)
                lhs = ast.BinaryOp(tok.text, lhs, rhs, loc=tok.loc())
                continue
            # `~x -1` lexes the literal as negative; read it as subtraction
            if '+' in ops and tok.kind == NUMBER and tok.text.startswith('-'):
                rhs = self.parse_binary(level + 1)
                lhs = ast.BinaryOp('+', lhs, rhs, loc=tok.loc())
                continue
            return lhs

    def parse_unary(self):
        tok = self.current
        if tok.kind == KEYWORD and tok.text == 'not':
            self.advance()
            return ast.UnaryOp('not', self.parse_unary(), loc=tok.loc())
        if tok.kind == OP and tok.text == '-':
            self.advance()
            return ast.UnaryOp('-', self.parse_unary(), loc=tok.loc())
        return self.parse_postfix(self.parse_primary())

    def parse_postfix(self, expr):
        while self.check_punct('.'):
            dot = self.advance()
            tok = self.current
            if tok.kind in (IDENT, KEYWORD) and not tok.explicit:
                self.advance()
                key = ast.String([tok.text], loc=tok.loc())
            elif tok.kind == NUMBER:
                self.advance()
                key = ast.Number(tok.value, tok.had_decimal_point, loc=tok.loc())
            elif tok.kind == VARIABLE:
                self.advance()
                key = ast.Variable(tok.value, loc=tok.loc())
            elif tok.kind == PUNCT and tok.text == '(':
                key = self.parse_paren()
            else:
                self.error("a property name, index, ~variable or '(' after '.'")
            expr = ast.PropertyAccess(expr, key, loc=dot.loc())
        return expr

    def parse_primary(self):
        tok = self.current
        loc = tok.loc()
        kind = tok.kind

        if kind == NUMBER:
            self.advance()
            return ast.Number(tok.value, tok.had_decimal_point, loc=loc)
        if kind == STRING:
            self.advance()
            return self.make_string(tok)
        if kind == VARIABLE:
            self.advance()
            return ast.Variable(tok.value, loc=loc)
        if kind == KEYWORD:
            if tok.text == 'true' or tok.text == 'false':
                self.advance()
                return ast.Boolean(tok.text == 'true', loc=loc)
            if tok.text == 'null':
                self.advance()
                return ast.Null(loc=loc)
            self.error("an expression")
        if kind == IDENT:
            self.advance()
            return ast.FunctionCall(tok.value, self.parse_call_args(), loc=loc)
        if kind == PUNCT:
            if tok.text == '(':
                return self.parse_paren()
            if tok.text == '[':
                return self.parse_list()
            if tok.text == '{':
                return self.parse_object()
            if tok.text == '|':
                return self.parse_anonymous_function()
        self.error("an expression")

    def make_string(self, tok: Token):
        parts = []
        for part in tok.value:
            if isinstance(part, Interpolation):
                expr = ast.Variable(part.name, loc=tok.loc())
                for seg in part.path:
                    key = ast.Number(float(seg)) if seg.isdigit() else ast.String([seg])
                    expr = ast.PropertyAccess(expr, key, loc=tok.loc())
                parts.append(expr)
            else:
                parts.append(part)
        return ast.String(parts, loc=tok.loc())

    def can_start_argument(self) -> bool:
        tok = self.current
        if tok.kind in (VARIABLE, NUMBER, STRING, IDENT):
            return True
        if tok.kind == KEYWORD:
            return tok.text in VALUE_KEYWORDS
        if tok.kind == PUNCT:
            if tok.text == '(':
                return not self.no_paren_args
            return tok.text in '[{|'
        return False

    def parse_call_args(self) -> List:
        args = []
        while self.can_start_argument():
            args.append(self.parse_argument())
        return args

    def parse_argument(self):
        tok = self.current
        if tok.kind == IDENT:
            self.advance()
            if tok.explicit:
                # `say *double 5`: a nested call takes the remaining arguments
                return ast.FunctionCall(tok.value, self.parse_call_args(), loc=tok.loc())
            return ast.FunctionRef(tok.value, loc=tok.loc())
        return self.parse_postfix(self.parse_primary())

    def parse_paren(self):
        """`( expr )` is grouping; `( stmt stmt ... )` is a Block."""
        open_tok = self.current
        statements = self.parse_body()
        if len(statements) == 1 and isinstance(statements[0], ast.ExpressionStatement):
            return statements[0].expr
        return ast.Block(statements, loc=open_tok.loc())

    def _nested(self, fn):
        saved, self.no_paren_args = self.no_paren_args, False
        try:
            return fn()
        finally:
            self.no_paren_args = saved

    def parse_list(self):
        return self._nested(self._parse_list)

    def _parse_list(self):
        loc = self.advance().loc()
        items = []
        self.skip_newlines()
        while not self.check_punct(']'):
            if self.current.kind == EOF:
                self.error("']' to close list")
            items.append(self.parse_expression())
            self.skip_newlines()
            if self.check_punct(','):
                self.advance()
                self.skip_newlines()
        self.advance()
        return ast.ListLiteral(items, loc=loc)

    def parse_object(self):
        return self._nested(self._parse_object)

    def _parse_object(self):
        loc = self.advance().loc()
        pairs = []
        self.skip_newlines()
        while not self.check_punct('}'):
            tok = self.current
            if tok.kind in (IDENT, KEYWORD) and not tok.explicit:
                key = tok.text
            elif tok.kind == STRING and all(isinstance(p, str) for p in tok.value):
                key = ''.join(tok.value)
            elif tok.kind == NUMBER:
                key = self._number_key(tok.value)
            else:
                self.error("an object key or '}'")
            self.advance()
            self.expect(PUNCT, ':', "':' after object key")
            self.skip_newlines()
            pairs.append((key, self.parse_expression()))
            self.skip_newlines()
            if self.check_punct(','):
                self.advance()
                self.skip_newlines()
        self.advance()
        return ast.ObjectLiteral(pairs, loc=loc)

    @staticmethod
    def _number_key(value: float) -> str:
        return str(int(value)) if value == int(value) else str(value)

    def parse_anonymous_function(self):
        return self._nested(self._parse_anonymous_function)

    def _parse_anonymous_function(self):
        loc = self.advance().loc()
        params = []
        while self.current.kind == VARIABLE:
            params.append(self.advance().value)
        if not self.check_punct('('):
            self.error("'(' to open the function body")
        body = self.parse_paren()
        self.expect(PUNCT, '|', "'|' to close the anonymous function")
        return ast.AnonymousFunction(params, body, loc=loc)


def parse(source: str) -> ast.Program:
    """Lex and parse a whole source string."""
    return Parser(tokenize(source)).parse_program()
