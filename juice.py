import sys
from pathlib import Path

from juice.juice_runtime import ScriptRunner
from juice.juice_printer import Printer
from juice.juice_datatypes import Void


def read_line(prompt: str) -> str:
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()


def print_side_effects(result):
    for effect in result.side_effects:
        if effect.get('topics') == ['stdout']:
            print(effect.get('message', ''))


def run_script_file(file_path: str):
    """Run a Juice script file non-interactively and exit with appropriate status."""
    p = Path(file_path)
    if p.suffix != ".juice":
        print(f"Error: expected a .juice file: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    result = ScriptRunner().handle_script(source)
    # Output produced before a failure is still shown
    print_side_effects(result)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)


def main(argv=None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    argv = sys.argv[1:] if argv is None else argv
    if argv and not argv[0].startswith("-"):
        run_script_file(argv[0])
        return

    print("Juice REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner()
    printer = Printer()

    while True:
        try:
            raw = read_line(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break
            # Let a bare expression be typed without its semicolon
            if not line.endswith((";", "}")):
                line += ";"

            result = runner.handle_script(line)
            print_side_effects(result)

            if result.status == 'error':
                print(result.format_error(), file=sys.stderr)
                continue

            if result.value is not Void:
                print(printer.pformat(result.value))

        except EOFError:
            print("\nExiting.")
            break


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
