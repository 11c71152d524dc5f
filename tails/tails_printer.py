"""
A pretty-printer for Tails values.

Two renderings are provided:
  - `Printer().pformat(v)`: the REPL echo form, with strings quoted,
  - `to_display(v)`: what `say`, string concatenation and interpolation
    produce, with strings left raw at every depth.
"""
from datetime import datetime

from tails.tails_datatypes import Closure, Builtin, ErrorValue, DecimalNumber


def format_number(n) -> str:
    """Whole numbers print without a trailing `.0`."""
    f = float(n)
    if f != f:
        return 'NaN'
    if f in (float('inf'), float('-inf')):
        return 'inf' if f > 0 else '-inf'
    if f.is_integer() and abs(f) < 1e16:
        return str(int(f))
    return repr(f)


def _escape(s: str) -> str:
    return (s.replace('\\', '\\\\').replace('"', '\\"')
             .replace('\n', '\\n').replace('\t', '\\t').replace('\r', '\\r'))


class Printer:
    """Formats Tails values into readable strings."""

    def __init__(self, quote_strings: bool = True):
        self.quote_strings = quote_strings
        self._handlers = self._create_handlers()

    def pformat(self, obj) -> str:
        """Public entry point to format an object."""
        return self._get_handler(obj)(obj)

    def _get_handler(self, obj):
        handler = self._handlers.get(type(obj))
        if handler is not None:
            return handler
        if isinstance(obj, dict):
            return self._pformat_dict
        if isinstance(obj, list):
            return self._pformat_list
        return lambda o: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_number,
            float: self._pformat_number,
            DecimalNumber: self._pformat_number,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
            dict: self._pformat_dict,
            ErrorValue: self._pformat_error,
            Closure: self._pformat_closure,
            Builtin: self._pformat_builtin,
            datetime: self._pformat_date,
        }

    def _pformat_str(self, obj):
        if not self.quote_strings:
            return obj
        return f'"{_escape(obj)}"'

    def _pformat_number(self, obj):
        return format_number(obj)

    def _pformat_bool(self, obj):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj):
        return 'null'

    def _pformat_list(self, obj):
        return '[' + ', '.join(self.pformat(item) for item in obj) + ']'

    def _pformat_dict(self, obj):
        items = ', '.join(f"{k}: {self.pformat(v)}" for k, v in obj.items())
        return '{' + items + '}'

    def _pformat_error(self, obj):
        return f"Error: {obj.message}"

    def _pformat_closure(self, obj):
        return f"<action {obj.name}>" if obj.name else "<function>"

    def _pformat_builtin(self, obj):
        return f"<builtin {obj.name}>"

    def _pformat_date(self, obj):
        return format_date(obj)


def format_date(d: datetime) -> str:
    return d.strftime("%Y-%m-%dT%H:%M:%SZ")


_display = Printer(quote_strings=False)


def to_display(value) -> str:
    return _display.pformat(value)
