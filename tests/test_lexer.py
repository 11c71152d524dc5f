import pytest

from tails.tails_lexer import (
    tokenize, Interpolation,
    VARIABLE, IDENT, NUMBER, STRING, KEYWORD, OP, PUNCT, NEWLINE, EOF,
)
from tails.tails_datatypes import LexError, ParseError


def kinds(src):
    return [t.kind for t in tokenize(src)]


def test_assignment_tokens():
    toks = tokenize("~x is 5")
    assert [t.kind for t in toks] == [VARIABLE, KEYWORD, NUMBER, EOF]
    assert toks[0].value == "x"
    assert toks[2].value == 5.0


def test_kebab_case_names_are_single_tokens():
    toks = tokenize("~my-var is-even break-loop")
    assert toks[0].kind == VARIABLE and toks[0].value == "my-var"
    assert toks[1].kind == IDENT and toks[1].text == "is-even"
    assert toks[2].kind == KEYWORD and toks[2].text == "break-loop"


def test_comments_and_whitespace_produce_no_tokens():
    assert kinds("# a comment\n~a") == [NEWLINE, VARIABLE, EOF]
    assert kinds("~a   # trailing") == [VARIABLE, EOF]


def test_blank_lines_collapse_to_one_newline():
    assert kinds("1\n\n\n2") == [NUMBER, NEWLINE, NUMBER, EOF]


def test_decimal_point_is_recorded():
    whole, frac = tokenize("1 1.5")[:2]
    assert whole.had_decimal_point is False
    assert frac.had_decimal_point is True
    assert frac.value == 1.5


def test_index_after_dot_stays_whole():
    toks = tokenize("~xs.0.1")
    assert [t.kind for t in toks] == [VARIABLE, PUNCT, NUMBER, PUNCT, NUMBER, EOF]
    assert toks[2].value == 0.0
    assert toks[4].value == 1.0


@pytest.mark.parametrize("src,expected", [
    ("5-3", [NUMBER, OP, NUMBER, EOF]),
    ("5 - 3", [NUMBER, OP, NUMBER, EOF]),
    ("-3", [NUMBER, EOF]),
    ("[1, -2]", [PUNCT, NUMBER, PUNCT, NUMBER, PUNCT, EOF]),
])
def test_minus_sign_handling(src, expected):
    assert kinds(src) == expected


def test_negative_literal_value():
    toks = tokenize("say -4")
    assert toks[1].kind == NUMBER
    assert toks[1].value == -4.0


def test_string_escapes():
    tok = tokenize(r'"a\nb\t\"c\""')[0]
    assert tok.kind == STRING
    assert tok.value == ['a\nb\t"c"']


def test_string_interpolation_parts():
    tok = tokenize('"Hi `~user.name`!"')[0]
    assert tok.value == ["Hi ", Interpolation("user", ["name"]), "!"]


def test_explicit_call_token():
    tok = tokenize("*double")[0]
    assert tok.kind == IDENT
    assert tok.explicit is True
    assert tok.value == "double"


def test_operators_longest_match_first():
    toks = tokenize("1 <= 2 != 3")
    assert [t.text for t in toks if t.kind == OP] == ["<=", "!="]


def test_token_positions():
    toks = tokenize("~a is 1\n  ~b is 2")
    b = [t for t in toks if t.kind == VARIABLE][1]
    assert (b.line, b.col) == (2, 3)


def test_unterminated_string_raises_lex_error():
    with pytest.raises(LexError) as exc:
        tokenize('say "oops')
    assert "Unterminated string" in exc.value.message
    assert exc.value.line == 1
    assert exc.value.col == 5


def test_illegal_character_names_character_and_position():
    with pytest.raises(ParseError) as exc:
        tokenize("~a is 1\n~b is @")
    assert "'@'" in exc.value.message
    assert (exc.value.line, exc.value.col) == (2, 7)


def test_tokenize_is_pure():
    src = '~x is [1, 2]\nsay "`~x`"'
    assert [repr(t) for t in tokenize(src)] == [repr(t) for t in tokenize(src)]
