"""Interactive front end: pick an action, pick a file, patch it, repeat.

```
python -m ussr [path]
```

The optional ``path`` is used for the first selection; afterwards (or when it
is omitted) a native file dialog is opened in the directory of the last file
that was patched.  Without Tk the path is read from standard input instead.
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from . import __version__
from .editor import RecordEditor, load_editor
from .errors import USSRError
from .mutations import MUTATIONS
from .pipeline import PipelineResult, run_pipeline

tk = None
filedialog = None
try:
    # Tkinter is optional; only needed for the native file picker.
    import tkinter as tk
    from tkinter import filedialog

    TK_AVAILABLE = True
except Exception:  # pragma: no cover - Tkinter availability is platform specific.
    TK_AVAILABLE = False

logger = logging.getLogger(__name__)

LAST_OPEN_FILE = Path(os.environ.get("USSR_LAST_OPEN_FILE", "last_open.txt"))
LAST_OPEN_KEY = "last_opened="
DEBUG_ENV = "USSR_DEBUG"

EXIT_CHOICE = "Exit"
MENU = tuple(MUTATIONS) + (EXIT_CHOICE,)

SUPPORTED_FILES = (
    "globalgamemanagers",
    "data.unity3d",
    "*.data",
    "*.data.br",
    "*.data.gz",
    "*.data.unityweb",
)

HELP_TEXT = f"""Unity Splash Screen Remover v{__version__}

Removes the Unity splash screen or watermark from a built player by
patching the generated build, not the Unity Editor.

Before using it, set the splash screen Draw Mode in Player Settings to
"All Sequential". A one-time backup (<file>.bak) is written next to the
selected file before the first change.

Select an action, then one of these files in your game data:
    {" | ".join(SUPPORTED_FILES)}
"""


def configure_logging(verbose: bool | None = None) -> None:
    """Send log records to stderr as ``( LEVEL ) message`` lines."""

    if verbose is None:
        verbose = os.environ.get(DEBUG_ENV, "") not in ("", "0")
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("( %(levelname)s ) %(message)s"))
    root = logging.getLogger("ussr")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False


def save_last_opened(path: Path, record: Path | None = None) -> None:
    record = record or LAST_OPEN_FILE
    try:
        record.write_text(f"{LAST_OPEN_KEY}{path}\n", encoding="utf-8")
    except OSError:
        logger.exception("Unable to remember the last opened file")


def get_last_opened(record: Path | None = None) -> Optional[Path]:
    record = record or LAST_OPEN_FILE
    if not record.is_file():
        return None
    try:
        lines = record.read_text(encoding="utf-8").splitlines()
    except OSError:
        logger.exception("Unable to read the last opened file")
        return None
    for line in lines:
        if line.startswith(LAST_OPEN_KEY):
            value = line[len(LAST_OPEN_KEY) :].strip()
            return Path(value) if value else None
    return None


def prompt_choice(options: Sequence[str], title: str, input_func: Callable[[str], str] = input) -> int:
    """Print a numbered menu and return the index picked by the user."""

    while True:
        print(title)
        for index, option in enumerate(options, start=1):
            print(f"  {index}) {option}")
        answer = input_func("> ").strip()
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return int(answer) - 1
        print(f"Please enter a number between 1 and {len(options)}.")


def ask_logo_index(labels: Sequence[str], input_func: Callable[[str], str] = input) -> int:
    """Ask which splash screen logo is the Unity one."""

    for index, label in enumerate(labels):
        print(f"{index} => {label}")
    while True:
        answer = input_func("What order are Unity logo in your Player Settings? ").strip()
        try:
            index = int(answer)
        except ValueError:
            index = -1
        if 0 <= index < len(labels):
            return index
        print(f"There's no splash screen at index {answer}! Try again.")


def open_file_picker(initial_dir: Optional[Path] = None, input_func: Callable[[str], str] = input) -> Optional[Path]:
    """Return the file chosen by the user, or ``None`` when cancelled."""

    if not TK_AVAILABLE:
        answer = input_func("Path to the file (empty to cancel): ").strip().strip('"')
        return Path(answer) if answer else None

    print("Opening File Picker...")
    try:
        root = tk.Tk()
    except tk.TclError:
        logger.error("Unable to open File Picker! Try using a different Terminal?")
        answer = input_func("Path to the file (empty to cancel): ").strip().strip('"')
        return Path(answer) if answer else None

    try:
        root.withdraw()
        selected = filedialog.askopenfilename(
            parent=root,
            title="Select a Unity build file",
            initialdir=str(initial_dir) if initial_dir else None,
        )
    finally:
        root.destroy()

    if not selected:
        logger.info("Cancelled.")
        return None
    return Path(selected)


def process_file(
    selected: Path,
    choice: int,
    editor: RecordEditor,
    input_func: Callable[[str], str] = input,
) -> Optional[PipelineResult]:
    """Run the chosen mutation on ``selected``; errors are reported, not raised."""

    mutation = MUTATIONS[MENU[choice]]
    try:
        result = run_pipeline(
            selected,
            editor,
            mutation,
            chooser=lambda labels: ask_logo_index(labels, input_func),
        )
    except USSRError as exc:
        logger.error("%s", exc)
        return None

    if result.changed:
        print(f"Done. Changes written to {result.selected} (backup: {result.backup})")
    else:
        print("Nothing to do.")
    return result


def interactive_loop(
    initial: Optional[Path] = None,
    *,
    editor_factory: Callable[[], RecordEditor] = load_editor,
    picker: Callable[[Optional[Path]], Optional[Path]] | None = None,
    input_func: Callable[[str], str] = input,
    last_open_record: Path | None = None,
) -> int:
    """Keep offering the menu until the user picks "Exit"."""

    picker = picker or (lambda start: open_file_picker(start, input_func))
    pending = initial

    while True:
        print(HELP_TEXT)
        try:
            choice = prompt_choice(MENU, "What would you like to do?", input_func)
        except (EOFError, KeyboardInterrupt):
            return 0
        if MENU[choice] == EXIT_CHOICE:
            return 0

        if pending is not None:
            selected, pending = pending, None
        else:
            last = get_last_opened(last_open_record)
            try:
                selected = picker(last.parent if last else None)
            except (EOFError, KeyboardInterrupt):
                return 0
        if selected is None:
            continue

        logger.info("Selected file: %s", selected)
        save_last_opened(selected, last_open_record)

        try:
            editor = editor_factory()
        except USSRError as exc:
            logger.error("%s", exc)
            continue
        process_file(selected, choice, editor, input_func)
        print()


def build_cli() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ussr",
        description="Remove the Unity splash screen or watermark from a built game",
    )
    parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        help="globalgamemanagers, data.unity3d or a WebGL .data(.br/.gz/.unityweb) file",
    )
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    parser = build_cli()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging()
    return interactive_loop(args.path)


if __name__ == "__main__":
    raise SystemExit(main())
