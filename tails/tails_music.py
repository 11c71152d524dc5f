"""
Pattern and scheduling model behind the `tempo`, `pattern`, `play` and
`stop` builtins.

Patterns use a small mini-notation: space separated steps share one cycle
equally; `~` is a rest; `[a b]` subdivides a step; `x*n` repeats x n times
within its step. The scheduler only computes which events fall due. It is
advanced by explicit `tick` calls and never produces sound.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Union


@dataclass
class Event:
    time: float          # position inside the cycle, 0 <= time < 1
    duration: float
    note: Optional[str]  # None for a rest


@dataclass
class TimedEvent:
    time: float          # absolute time in cycles
    note: str
    pattern: int


@dataclass
class Pattern:
    notation: str
    events: List[Event] = field(default_factory=list)

    @property
    def notes(self) -> List[str]:
        return [e.note for e in self.events if e.note is not None]

    def __repr__(self):
        return f'<pattern "{self.notation}">'


# --- mini-notation ---

@dataclass
class _Step:
    item: Union[str, None, list]  # note name, rest, or a nested sequence
    repeat: int = 1


def _tokenize(text: str) -> List[str]:
    tokens: List[str] = []
    buf = ''
    for ch in text:
        if ch in '[]':
            if buf:
                tokens.append(buf)
                buf = ''
            tokens.append(ch)
        elif ch.isspace():
            if buf:
                tokens.append(buf)
                buf = ''
        else:
            buf += ch
    if buf:
        tokens.append(buf)
    return tokens


def _split_repeat(word: str):
    if '*' not in word:
        return word, 1
    base, _, count = word.partition('*')
    try:
        n = int(count)
    except ValueError:
        raise ValueError(f"Repeat modifier '*' must be followed by a whole number in '{word}'")
    if n < 1:
        raise ValueError(f"Repeat count must be positive in '{word}'")
    return base, n


def _parse_sequence(tokens: List[str], pos: int, nested: bool):
    steps: List[_Step] = []
    while pos < len(tokens):
        tok = tokens[pos]
        if tok == ']':
            if not nested:
                raise ValueError("Unbalanced ']' in pattern")
            return steps, pos + 1
        if tok == '[':
            inner, pos = _parse_sequence(tokens, pos + 1, True)
            repeat = 1
            # `[a b]*2` arrives as a separate '*2' token
            if pos < len(tokens) and tokens[pos].startswith('*'):
                _, repeat = _split_repeat(tokens[pos])
                pos += 1
            steps.append(_Step(inner, repeat))
            continue
        name, repeat = _split_repeat(tok)
        steps.append(_Step(None if name == '~' else name, repeat))
        pos += 1
    if nested:
        raise ValueError("Unbalanced '[' in pattern")
    return steps, pos


def _flatten(steps: List[_Step], start: float, span: float, out: List[Event]):
    if not steps:
        return
    slot = span / len(steps)
    for i, step in enumerate(steps):
        slot_start = start + i * slot
        sub = slot / step.repeat
        for r in range(step.repeat):
            t = slot_start + r * sub
            if isinstance(step.item, list):
                _flatten(step.item, t, sub, out)
            else:
                out.append(Event(t, sub, step.item))


def parse_mini_notation(text: str) -> Pattern:
    steps, _ = _parse_sequence(_tokenize(text), 0, False)
    events: List[Event] = []
    _flatten(steps, 0.0, 1.0, events)
    return Pattern(text, events)


# --- scheduler ---

class Scheduler:
    """Cycle-based scheduler. Time is measured in cycles; tempo in cycles per minute."""

    def __init__(self, cpm: float = 120.0):
        self.cpm = cpm
        self.patterns: List[Pattern] = []
        self.is_playing = False
        self.current_time = 0.0

    def set_tempo(self, cpm: float):
        if cpm <= 0:
            raise ValueError("tempo must be positive")
        self.cpm = cpm

    def add_pattern(self, pattern: Pattern):
        self.patterns.append(pattern)
        if not self.is_playing:
            self.start()

    def start(self):
        self.is_playing = True
        self.current_time = 0.0

    def stop(self):
        self.is_playing = False
        self.patterns.clear()
        self.current_time = 0.0

    def tick(self, elapsed_seconds: float) -> List[TimedEvent]:
        """Advances the clock and returns the note events that fell due."""
        if not self.is_playing:
            return []
        start = self.current_time
        end = start + elapsed_seconds * (self.cpm / 60.0)
        due: List[TimedEvent] = []
        for index, pattern in enumerate(self.patterns):
            cycle = int(start)
            while cycle < end:
                for ev in pattern.events:
                    t = cycle + ev.time
                    if ev.note is not None and start <= t < end:
                        due.append(TimedEvent(t, ev.note, index))
                cycle += 1
        self.current_time = end
        due.sort(key=lambda e: (e.time, e.pattern))
        return due
