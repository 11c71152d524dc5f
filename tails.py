import sys
from pathlib import Path

from tails import __version__
from tails.tails_runtime import ScriptRunner
from tails.tails_printer import Printer

PROMPT = "~tails> "
CONTINUATION = "...> "

USAGE = """\
usage: tails.py [--help] [--version] [script.tails]

With no arguments, starts an interactive REPL.
With a file argument, runs the script once and exits.
"""


def read_line(prompt: str) -> str:
    """Reads one line; returns "" at end of input."""
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()


def needs_more_input(buffer: str) -> bool:
    """True while brackets are unbalanced or a string is still open."""
    depth = 0
    in_string = False
    escaped = False
    in_comment = False
    for ch in buffer:
        if in_comment:
            if ch == "\n":
                in_comment = False
            continue
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "#":
            in_comment = True
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
    return in_string or depth > 0


def run_script_file(file_path: str):
    """Run a Tails script file non-interactively and exit with appropriate status."""
    runner = ScriptRunner(output_func=print)
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    runner.source_dir = str(p.parent.resolve())
    result = runner.handle_script(source)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)


def main(argv=None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    args = sys.argv[1:] if argv is None else argv
    if args:
        arg = args[0]
        if arg == "--version":
            print(f"tails {__version__}")
            return
        if arg in ("--help", "-h"):
            print(USAGE, end="")
            return
        if arg.startswith("-"):
            print(f"Unknown option: {arg}", file=sys.stderr)
            print(USAGE, end="", file=sys.stderr)
            raise SystemExit(2)
        run_script_file(arg)
        return

    print(f"Tails REPL v{__version__}")
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner(output_func=print)
    printer = Printer()
    runner.source_dir = str(Path.cwd())

    buffer = ""
    while True:
        raw = read_line(CONTINUATION if buffer else PROMPT)
        if raw == "":
            print("\nExiting.")
            break
        line = raw.rstrip("\n")

        if not buffer:
            if not line.strip():
                continue
            if line.strip() == "exit":
                break

        buffer = f"{buffer}\n{line}" if buffer else line
        if needs_more_input(buffer):
            continue

        source, buffer = buffer, ""
        result = runner.handle_script(source)
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            continue
        if result.value is not None:
            print(printer.pformat(result.value))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
