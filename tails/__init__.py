__version__ = "0.1.0"

from tails.tails_runtime import ScriptRunner, ExecutionResult, StdLib
from tails.tails_printer import Printer, to_display
from tails.tails_datatypes import TailsError, ParseError, LexError, TailsRuntimeError

__all__ = [
    "ScriptRunner", "ExecutionResult", "StdLib",
    "Printer", "to_display",
    "TailsError", "ParseError", "LexError", "TailsRuntimeError",
]
