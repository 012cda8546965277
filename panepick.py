#!/usr/bin/env python3
import curses
import functools
import logging
import os
import subprocess
import sys
import termios
import time
import tty
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Protocol

DEFAULT_LEADERS = "]:bracket,[:bracket,z:scroll"
DEFAULT_MOTIONS = "f:C-f,b:C-b"

RENDERERS = ("overlay", "status")

# top-left, horizontal, top-right, vertical, bottom-left, bottom-right
BORDERS = {
    "single": "┌─┐│└┘",
    "double": "╔═╗║╚╝",
    "rounded": "╭─╮│╰╯",
    "none": "      ",
}

# Label boxes are a fixed size, like a small floating window.
FLOAT_HEIGHT = 3
FLOAT_WIDTH = 6

KEY_NAMES = {
    "\r": "Enter",
    "\n": "Enter",
    "\t": "Tab",
    " ": "Space",
    "\x1b": "Escape",
    "\x7f": "BSpace",
    # a bare ";" separates tmux commands
    ";": "\\;",
}


class ConfigError(ValueError):
    """Raised when the panepick tmux options do not form a usable Config."""


@functools.lru_cache(maxsize=1)
def _get_all_tmux_options() -> dict:
    """Batch read all tmux options in one subprocess call."""
    try:
        result = subprocess.run(
            ["tmux", "show-options", "-g"], capture_output=True, text=True, check=False
        )
        options = {}
        for line in result.stdout.strip().split("\n"):
            if " " in line:
                key, value = line.split(" ", 1)
                options[key] = value.strip('"')
        return options
    except OSError:
        return {}


def get_tmux_option(option: str, default: str) -> str:
    """Get tmux option value, falling back to default if not set."""
    return _get_all_tmux_options().get(option, default)


def key_from_name(name: str) -> str:
    """Turn a tmux style key name ("Escape", "C-g", "q") into the raw character."""
    for ch, key_name in KEY_NAMES.items():
        if name == key_name:
            return ch
    if len(name) == 3 and name.startswith("C-"):
        return chr(ord(name[2].lower()) & 0x1F)
    if len(name) != 1:
        raise ConfigError(f"unknown key name {name!r}")
    return name


def tmux_key_name(ch: str) -> str:
    """Name a raw character the way `tmux send-keys` expects it."""
    if ch in KEY_NAMES:
        return KEY_NAMES[ch]
    code = ord(ch)
    if 0 < code < 32:
        return "C-" + chr(code + 64).lower()
    return ch


def parse_pairs(raw: str, option: str = "") -> Mapping[str, str]:
    """Parse a "key:value,key:value" option into a read-only mapping.

    Keys are single characters; values are passed through untouched.
    An empty string yields an empty mapping.
    """
    pairs = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition(":")
        if not sep or len(key) != 1 or not value:
            raise ConfigError(f"{option}: malformed entry {item!r}, expected key:value")
        pairs[key] = value
    return MappingProxyType(pairs)


@dataclass(frozen=True)
class Config:
    """Configuration for panepick, loaded once per invocation."""

    hints: str = field(
        default="abcdefghijklmnopqrstuvwxyz", metadata={"opt": "@panepick-hints"}
    )
    cancel_key: str = field(
        default="\x1b", metadata={"opt": "@panepick-cancel-key", "key": True}
    )
    renderer: str = field(default="overlay", metadata={"opt": "@panepick-renderer"})
    use_curses: bool = field(default=False, metadata={"opt": "@panepick-use-curses"})
    border: str = field(default="single", metadata={"opt": "@panepick-border"})
    leaders: Mapping[str, str] = field(
        default_factory=lambda: parse_pairs(DEFAULT_LEADERS),
        metadata={"opt": "@panepick-leaders", "pairs": DEFAULT_LEADERS},
    )
    motions: Mapping[str, str] = field(
        default_factory=lambda: parse_pairs(DEFAULT_MOTIONS),
        metadata={"opt": "@panepick-motions", "pairs": DEFAULT_MOTIONS},
    )

    def __post_init__(self):
        if not self.hints:
            raise ConfigError("@panepick-hints must not be empty")
        if len(set(self.hints)) != len(self.hints):
            raise ConfigError(f"@panepick-hints has repeated characters: {self.hints!r}")
        if len(self.cancel_key) != 1:
            raise ConfigError("@panepick-cancel-key must be a single key")
        if self.renderer not in RENDERERS:
            raise ConfigError(
                f"@panepick-renderer must be one of {', '.join(RENDERERS)}, "
                f"got {self.renderer!r}"
            )
        if self.border not in BORDERS:
            raise ConfigError(f"unknown @panepick-border style {self.border!r}")
        for leader, handler in self.leaders.items():
            if handler not in LEADER_HANDLERS:
                raise ConfigError(f"unknown motion leader handler {handler!r} for {leader!r}")

    @classmethod
    def from_tmux(cls) -> "Config":
        """Load configuration from tmux options."""
        kwargs = {}
        for f in fields(cls):
            opt = f.metadata["opt"]
            if f.type is bool:
                raw = get_tmux_option(opt, str(f.default).lower())
                kwargs[f.name] = raw.lower() == "true"
            elif "pairs" in f.metadata:
                kwargs[f.name] = parse_pairs(get_tmux_option(opt, f.metadata["pairs"]), opt)
            elif f.metadata.get("key"):
                kwargs[f.name] = key_from_name(get_tmux_option(opt, f.default))
            else:
                kwargs[f.name] = get_tmux_option(opt, f.default)
        return cls(**kwargs)


class Screen(ABC):
    A_DIM = 1
    A_HINT = 2

    @abstractmethod
    def init(self):
        """Initialize the screen"""

    @abstractmethod
    def cleanup(self):
        """Cleanup the screen"""

    @abstractmethod
    def addstr(self, y: int, x: int, text: str, attr=0):
        """Add string with attributes"""

    @abstractmethod
    def refresh(self):
        """Refresh the screen"""


class AnsiSequence(Screen):
    ESC = "\033"
    RESET = f"{ESC}[0m"
    STYLES = {Screen.A_DIM: f"{ESC}[2m", Screen.A_HINT: f"{ESC}[1;31m"}

    def init(self):
        sys.stdout.write(f"{self.ESC}[?25l")
        sys.stdout.flush()

    def cleanup(self):
        sys.stdout.write(f"{self.ESC}[?25h{self.RESET}")
        sys.stdout.flush()

    def addstr(self, y: int, x: int, text: str, attr=0):
        style = self.STYLES.get(attr)
        if style:
            text = f"{style}{text}{self.RESET}"
        sys.stdout.write(f"{self.ESC}[{y + 1};{x + 1}H{text}")

    def refresh(self):
        sys.stdout.flush()


class Curses(Screen):
    def __init__(self):
        self.stdscr = None
        self.styles = {}

    def init(self):
        self.stdscr = curses.initscr()
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(1, curses.COLOR_RED, -1)
        curses.noecho()
        curses.cbreak()
        curses.curs_set(False)
        self.stdscr.keypad(True)
        self.styles = {
            self.A_DIM: curses.A_DIM,
            self.A_HINT: curses.color_pair(1) | curses.A_BOLD,
        }

    def cleanup(self):
        if not self.stdscr:
            return
        curses.nocbreak()
        self.stdscr.keypad(False)
        curses.echo()
        curses.endwin()

    def addstr(self, y: int, x: int, text: str, attr=0):
        try:
            self.stdscr.addstr(y, x, text, self.styles.get(attr, curses.A_NORMAL))
        except curses.error:
            pass

    def refresh(self):
        self.stdscr.refresh()


def setup_logging(use_curses: bool = False):
    """Initialize logging configuration based on tmux options"""
    debug = get_tmux_option("@panepick-debug", "false").lower() == "true"
    perf = get_tmux_option("@panepick-perf", "false").lower() == "true"

    if not (debug or perf):
        logging.getLogger().disabled = True
        return

    log_file = os.path.expanduser("~/panepick.log")
    logging.basicConfig(
        filename=log_file,
        level=logging.DEBUG,
        format=f"%(asctime)s - %(levelname)s - {'CURSE' if use_curses else 'ANSI'} - %(message)s",
    )


def perf_timer(func_name=None):
    """Performance timing decorator that only logs when perf is enabled"""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            perf = get_tmux_option("@panepick-perf", "false").lower() == "true"
            if not perf:
                return func(*args, **kwargs)

            name = func_name or func.__name__
            start_time = time.perf_counter()
            result = func(*args, **kwargs)
            end_time = time.perf_counter()

            logging.info(f"{name} took: {end_time - start_time:.3f} seconds")
            return result

        return wrapper

    return decorator


@functools.lru_cache(maxsize=1024)
def get_char_width(char: str) -> int:
    """Get visual width of a single character with caching"""
    return 2 if unicodedata.east_asian_width(char) in "WF" else 1


@functools.lru_cache(maxsize=1024)
def get_string_width(s: str) -> int:
    """Calculate visual width of string, accounting for double-width characters"""
    return sum(map(get_char_width, s))


def get_true_position(line, target_col):
    """Calculate true position accounting for wide characters"""
    visual_pos = 0
    true_pos = 0
    while true_pos < len(line) and visual_pos < target_col:
        visual_pos += get_char_width(line[true_pos])
        true_pos += 1
    return true_pos


def clip_to_width(text: str, width: int) -> str:
    """Cut text so that it occupies at most `width` terminal cells."""
    visual = 0
    for pos, ch in enumerate(text):
        visual += get_char_width(ch)
        if visual > width:
            return text[:pos]
    return text


def sh(cmd: list) -> str:
    """Run a tmux command and return its output, logging both"""
    try:
        output = subprocess.run(cmd, text=True, capture_output=True, check=True).stdout
    except subprocess.CalledProcessError as e:
        logging.error(f"{' '.join(cmd)} failed ({e.returncode}): {e.stderr.strip()}")
        raise
    logging.debug(f"{' '.join(cmd)} -> {output!r}")
    return output


class PaneInfo:
    """A selectable tmux pane.

    `index` is the tmux pane index: it orders hint assignment and stays the
    same however the panes were listed. `active` marks the current pane.
    """

    __slots__ = (
        "pane_id",
        "index",
        "active",
        "start_y",
        "height",
        "start_x",
        "width",
        "lines",
        "copy_mode",
    )

    def __init__(self, pane_id, index, active, start_y, height, start_x, width):
        self.pane_id = pane_id
        self.index = index
        self.active = active
        self.start_y = start_y
        self.height = height
        self.start_x = start_x
        self.width = width
        self.lines = []
        self.copy_mode = False

    def __repr__(self):
        return f"PaneInfo({self.pane_id!r}, index={self.index}, active={self.active})"


class TmuxLayout:
    """Window-layout provider backed by tmux.

    Lists the panes of one window (the current one unless `window` is given)
    and applies pane selection and relayed motions through `run`.
    """

    FORMAT = (
        "#{pane_id},#{pane_index},#{window_zoomed_flag},#{pane_active},"
        + "#{pane_top},#{pane_height},#{pane_left},#{pane_width},#{pane_in_mode}"
    )

    def __init__(self, window: Optional[str] = None, own_pane: Optional[str] = None, run=sh):
        self.window = window
        # The pane panepick itself runs in is never a target.
        self.own_pane = own_pane if own_pane is not None else os.environ.get("TMUX_PANE")
        self.run = run

    def list_selectable_panes(self) -> List[PaneInfo]:
        cmd = ["tmux", "list-panes"]
        if self.window:
            cmd.extend(["-t", self.window])
        cmd.extend(["-F", self.FORMAT])

        panes = []
        for line in self.run(cmd).strip().split("\n"):
            if not line:
                continue
            (
                pane_id,
                index,
                zoomed,
                active,
                top,
                height,
                left,
                width,
                in_mode,
            ) = line.split(",")

            # A zoomed window only shows its active pane
            if zoomed == "1" and active != "1":
                continue
            if pane_id == self.own_pane:
                continue

            pane = PaneInfo(
                pane_id=pane_id,
                index=int(index),
                active=active == "1",
                start_y=int(top),
                height=int(height),
                start_x=int(left),
                width=int(width),
            )
            pane.copy_mode = in_mode == "1"
            if pane.height > 0 and pane.width > 0:
                panes.append(pane)

        logging.debug(f"Selectable panes: {panes}")
        return panes

    def current_pane(self, panes: List[PaneInfo]) -> Optional[PaneInfo]:
        return next((p for p in panes if p.active), None)

    def capture_pane(self, pane: PaneInfo) -> List[str]:
        """Visible content of a pane, at most `pane.height` lines."""
        output = self.run(["tmux", "capture-pane", "-p", "-t", pane.pane_id])
        return output[:-1].split("\n")[: pane.height]

    def select_pane(self, pane: PaneInfo):
        self.run(["tmux", "select-window", "-t", pane.pane_id])
        self.run(["tmux", "select-pane", "-t", pane.pane_id])

    def enter_relay(self, pane: PaneInfo):
        """Put the target in copy mode so forwarded keys act as motions."""
        if not pane.copy_mode:
            self.run(["tmux", "copy-mode", "-t", pane.pane_id])
            pane.copy_mode = True

    def send_keys(self, pane: PaneInfo, *keys: str):
        self.run(["tmux", "send-keys", "-t", pane.pane_id, *keys])

    def send_command(self, pane: PaneInfo, command: str):
        self.run(["tmux", "send-keys", "-X", "-t", pane.pane_id, command])

    def redraw(self, pane: PaneInfo):
        # tmux cannot redraw a single pane; refresh the whole client
        self.run(["tmux", "refresh-client"])


def get_terminal_size():
    """Get terminal size from tmux"""
    output = sh(["tmux", "display-message", "-p", "#{client_width},#{client_height}"])
    width, height = map(int, output.strip().split(","))
    return width, height - 1  # Subtract 1 from height


def get_current_window_id():
    """Return the window_id for the pane running this script"""
    pane_target = os.environ.get("TMUX_PANE")
    cmd = ["tmux", "display-message", "-p"]
    if pane_target:
        cmd.extend(["-t", pane_target])
    cmd.append("#{window_id}")
    return sh(cmd).strip()


def getch() -> Optional[str]:
    """Read one key from the terminal in raw mode.

    Returns None when no key can be read: Ctrl-C, end of input, or a
    terminal that cannot be switched to raw mode.
    """
    try:
        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
    except (OSError, ValueError, termios.error) as e:
        logging.error(f"Cannot read from terminal: {e}")
        return None

    try:
        tty.setraw(fd)
        ch = sys.stdin.read(1)
    except (OSError, KeyboardInterrupt) as e:
        logging.info(f"Key read interrupted: {e!r}")
        return None
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    if not ch:
        logging.info("No more input")
        return None
    if ch == "\x03":
        logging.info("Operation cancelled by user")
        return None
    return ch


def assign_hints(
    panes: List[PaneInfo], current: Optional[PaneInfo], hints: str
) -> Dict[str, PaneInfo]:
    """Map hint keys to every pane but the current one.

    Panes are walked in pane index order with a cursor into `hints`. On the
    first pass each pane gets the character under the cursor. Once the
    alphabet wraps and that character is taken, a second character is
    appended: the next one on the first wrap, one further along on each
    later wrap. The current pane gets no entry but its key still counts as
    taken, so a pane's key does not depend on which pane is active.

    Beyond len(hints) ** 2 + len(hints) panes keys repeat and the pane
    assigned last wins.
    """
    size = len(hints)
    taken = set()
    mapping = {}
    for position, pane in enumerate(sorted(panes, key=lambda p: p.index)):
        index = position % size
        key = hints[index]
        if key in taken:
            key += hints[(index + position // size) % size]
        taken.add(key)
        if pane is not current:
            mapping[key] = pane

    logging.debug(f"Hints: {mapping}")
    return mapping


class ResolveState(Enum):
    COMPLETE = "complete"
    NEEDS_SECOND = "needs_second"
    INVALID = "invalid"


@dataclass(frozen=True)
class Resolution:
    state: ResolveState
    pane: Optional[PaneInfo] = None
    narrowed: Optional[Dict[str, PaneInfo]] = None


def resolve_key(
    pressed: Optional[str], mapping: Dict[str, PaneInfo], hints: str, cancel_key: str
) -> Resolution:
    """Decide what a first keystroke means against the hint mapping."""
    if not pressed or pressed == cancel_key or pressed not in hints:
        return Resolution(ResolveState.INVALID)

    narrowed = {key: pane for key, pane in mapping.items() if key.startswith(pressed)}
    if not narrowed:
        return Resolution(ResolveState.INVALID)
    if len(narrowed) == 1 and pressed in narrowed:
        return Resolution(ResolveState.COMPLETE, pane=narrowed[pressed])
    # Either several hints share the prefix, or the only one is two keys long.
    return Resolution(ResolveState.NEEDS_SECOND, narrowed=narrowed)


def resolve_second_key(
    first: str,
    second: Optional[str],
    mapping: Dict[str, PaneInfo],
    narrowed: Dict[str, PaneInfo],
    cancel_key: str,
) -> Optional[PaneInfo]:
    """Finish an ambiguous selection.

    `first + second` must name a narrowed hint. Failing that, the first key is
    used on its own when it already was a complete hint. Cancelling never
    selects anything.
    """
    if not second or second == cancel_key:
        return None
    pane = narrowed.get(first + second)
    if pane is None:
        pane = mapping.get(first)
    return pane


class Renderer(Protocol):
    def show(self, mapping: Dict[str, PaneInfo]):
        """Display the hints, returning a handle for `hide`."""

    def hide(self, handle) -> None:
        """Remove the hints displayed by the `show` call that returned handle."""


class HintDisplay:
    """Owns the hints on screen for one selection attempt.

    Showing a new set hides the previous one first; leaving the `with` block
    hides whatever is still shown, whichever way the block is left.
    """

    def __init__(self, renderer: Renderer):
        self.renderer = renderer
        self._handle = None
        self._shown = False

    def show(self, mapping: Dict[str, PaneInfo]):
        self.close()
        self._handle = self.renderer.show(mapping)
        self._shown = True

    def close(self):
        if not self._shown:
            return
        handle, self._handle, self._shown = self._handle, None, False
        self.renderer.hide(handle)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class StatusRenderer:
    """Publishes hints as the per-pane user option `@panepick-hint`.

    Use `#{@panepick-hint}` in pane-border-format or status-format to show
    them. `label_for` answers the same question from Python.
    """

    OPTION = "@panepick-hint"

    def __init__(self, run=sh):
        self.run = run
        self.labels: Dict[str, str] = {}

    def show(self, mapping: Dict[str, PaneInfo]):
        for key, pane in mapping.items():
            self.labels[pane.pane_id] = key
            self.run(["tmux", "set-option", "-p", "-t", pane.pane_id, self.OPTION, key])
        self.run(["tmux", "refresh-client"])
        return dict(mapping)

    def hide(self, handle) -> None:
        for pane in handle.values():
            self.labels.pop(pane.pane_id, None)
            self.run(["tmux", "set-option", "-p", "-u", "-t", pane.pane_id, self.OPTION])
        self.run(["tmux", "refresh-client"])

    def label_for(self, pane: PaneInfo) -> Optional[str]:
        return self.labels.get(pane.pane_id)


def text_under(pane: PaneInfo, row: int, col: int, width: int) -> str:
    """Pane content covering `width` cells from (row, col), padded with spaces."""
    line = pane.lines[row] if 0 <= row < len(pane.lines) else ""
    text = clip_to_width(line[get_true_position(line, col):], width)
    return text + " " * (width - get_string_width(text))


class OverlayRenderer:
    """Draws a replica of the window with a labelled box near each pane's center.

    The replica is drawn on the first `show`; `hide` paints the replica back
    over the boxes it is given.
    """

    def __init__(
        self,
        screen: Screen,
        panes: List[PaneInfo],
        terminal_height: int,
        border: str = "single",
        vertical_border: str = "│",
        horizontal_border: str = "─",
        overlay_window: Optional[str] = None,
        run=sh,
    ):
        self.screen = screen
        self.panes = panes
        self.terminal_height = terminal_height
        self.border = BORDERS[border]
        self.vertical_border = vertical_border
        self.horizontal_border = horizontal_border
        self.overlay_window = overlay_window
        self.run = run
        self.max_x = max((p.start_x + p.width for p in panes), default=0)
        self._drawn = False

    @perf_timer()
    def draw_layout(self):
        """Draw all panes and their borders"""
        sorted_panes = sorted(self.panes, key=lambda p: p.start_y + p.height)

        for pane in sorted_panes:
            visible_height = min(pane.height, self.terminal_height - pane.start_y)

            for y in range(max(visible_height, 0)):
                self.screen.addstr(
                    pane.start_y + y, pane.start_x, text_under(pane, y, 0, pane.width)
                )

            if pane.start_x + pane.width < self.max_x:
                for y in range(pane.start_y, pane.start_y + visible_height):
                    self.screen.addstr(
                        y, pane.start_x + pane.width, self.vertical_border, self.screen.A_DIM
                    )

            end_y = pane.start_y + visible_height
            if end_y < self.terminal_height and pane is not sorted_panes[-1]:
                self.screen.addstr(
                    end_y,
                    pane.start_x,
                    self.horizontal_border * pane.width,
                    self.screen.A_DIM,
                )

        self.screen.refresh()

    def label_box(self, key: str, pane: PaneInfo):
        """Rows of the box labelling `pane` with `key`, and where the box goes."""
        inner = FLOAT_WIDTH - 1 if len(key) == 1 else FLOAT_WIDTH
        top_left, horizontal, top_right, vertical, bottom_left, bottom_right = self.border
        rows = [
            top_left + horizontal * inner + top_right,
            vertical + f"{key:^{inner}}" + vertical,
            bottom_left + horizontal * inner + bottom_right,
        ]
        row = max(0, pane.height // 2 - 1)
        col = max(0, pane.width // 2 - FLOAT_WIDTH)
        rows = [clip_to_width(text, pane.width - col) for text in rows[: pane.height - row]]
        return row, col, rows

    def show(self, mapping: Dict[str, PaneInfo]):
        if not self._drawn:
            self.draw_layout()
            self._drawn = True
            if self.overlay_window:
                self.run(["tmux", "select-window", "-t", self.overlay_window])

        drawn = []
        for key, pane in mapping.items():
            row, col, rows = self.label_box(key, pane)
            for offset, text in enumerate(rows):
                screen_y = pane.start_y + row + offset
                if screen_y >= self.terminal_height:
                    break
                attr = self.screen.A_HINT if offset == FLOAT_HEIGHT // 2 else self.screen.A_DIM
                self.screen.addstr(screen_y, pane.start_x + col, text, attr)
                drawn.append((pane, row + offset, col, get_string_width(text)))

        self.screen.refresh()
        return drawn

    def hide(self, handle) -> None:
        for pane, row, col, width in handle:
            self.screen.addstr(
                pane.start_y + row, pane.start_x + col, text_under(pane, row, col, width)
            )
        self.screen.refresh()


def bracket_motion(layout, pane: PaneInfo, leader: str, key: str):
    """Forward a bracket motion such as `]]` to the pane."""
    layout.send_keys(pane, tmux_key_name(leader), tmux_key_name(key))
    layout.redraw(pane)


SCROLL_COMMANDS = {
    "t": "scroll-top",
    "z": "scroll-middle",
    "b": "scroll-bottom",
}


def scroll_motion(layout, pane: PaneInfo, leader: str, key: str):
    """Reposition the view around the cursor: zt, zz, zb."""
    command = SCROLL_COMMANDS.get(key)
    if command is None:
        logging.debug(f"Ignoring {leader}{key}: not a scroll command")
        return
    layout.send_command(pane, command)
    layout.redraw(pane)


LEADER_HANDLERS: Dict[str, Callable] = {
    "bracket": bracket_motion,
    "scroll": scroll_motion,
}


class PickState(Enum):
    IDLE = "idle"
    AWAITING_FIRST_KEY = "awaiting_first_key"
    AWAITING_SECOND_KEY = "awaiting_second_key"
    RESOLVED = "resolved"
    DONE = "done"


class PanePicker:
    """Interactive pane selection, and motion relay to the selected pane."""

    def __init__(
        self,
        config: Config,
        layout,
        renderer: Renderer,
        read_key: Callable[[], Optional[str]] = getch,
    ):
        self.config = config
        self.layout = layout
        self.renderer = renderer
        self.read_key = read_key
        self.state = PickState.IDLE

    def select(self, panes: List[PaneInfo], current: Optional[PaneInfo]) -> Optional[PaneInfo]:
        """Let the user choose one of the panes other than `current`."""
        self.state = PickState.IDLE
        others = [p for p in panes if p is not current]
        if not others:
            logging.info("No other pane to select")
            self.state = PickState.DONE
            return None
        if len(others) == 1:
            logging.debug(f"Only one other pane, selecting {others[0].pane_id}")
            self.state = PickState.DONE
            return others[0]

        return self.choose(assign_hints(panes, current, self.config.hints))

    def choose(self, mapping: Dict[str, PaneInfo]) -> Optional[PaneInfo]:
        """Run the one or two keystroke prompt over an existing hint mapping."""
        hints, cancel_key = self.config.hints, self.config.cancel_key
        target = None

        with HintDisplay(self.renderer) as display:
            display.show(mapping)
            self.state = PickState.AWAITING_FIRST_KEY
            first = self.read_key()
            resolution = resolve_key(first, mapping, hints, cancel_key)

            if resolution.state is ResolveState.COMPLETE:
                self.state = PickState.RESOLVED
                target = resolution.pane
            elif resolution.state is ResolveState.NEEDS_SECOND:
                display.show(resolution.narrowed)
                self.state = PickState.AWAITING_SECOND_KEY
                second = self.read_key()
                target = resolve_second_key(
                    first, second, mapping, resolution.narrowed, cancel_key
                )
                if target is not None:
                    self.state = PickState.RESOLVED
            else:
                logging.info(f"Selection abandoned on key {first!r}")

        self.state = PickState.DONE
        logging.debug(f"Selected pane: {target}")
        return target

    def pick(self, panes: Optional[List[PaneInfo]] = None) -> Optional[PaneInfo]:
        """Select a pane and make it the active one."""
        if panes is None:
            panes = self.layout.list_selectable_panes()
        target = self.select(panes, self.layout.current_pane(panes))
        if target is not None:
            self.layout.select_pane(target)
        return target

    def relay(self, panes: Optional[List[PaneInfo]] = None) -> Optional[PaneInfo]:
        """Select a pane and forward the following keys to it as motions."""
        if panes is None:
            panes = self.layout.list_selectable_panes()
        target = self.select(panes, self.layout.current_pane(panes))
        if target is not None:
            self.relay_motions(target)
        return target

    def relay_motions(self, target: PaneInfo):
        """Send keys to `target` as copy-mode motions until cancelled."""
        cancel_key = self.config.cancel_key
        self.layout.enter_relay(target)

        while True:
            ch = self.read_key()
            if not ch:
                break

            handler = self.config.leaders.get(ch)
            if handler is not None:
                arg = self.read_key()
                if not arg or arg == cancel_key:
                    logging.debug(f"Leader {ch!r} dropped")
                    continue
                LEADER_HANDLERS[handler](self.layout, target, ch, arg)
                continue

            if ch == cancel_key:
                break

            key = self.config.motions.get(ch) or tmux_key_name(ch)
            self.layout.send_keys(target, key)
            self.layout.redraw(target)

        logging.info(f"Relay to {target.pane_id} finished")


@perf_timer("Total execution")
def main(screen: Optional[Screen], config: Config, argv: List[str]) -> Optional[PaneInfo]:
    action = argv[1] if len(argv) > 1 else "pick"
    window = argv[2] if len(argv) > 2 else None
    if action not in ("pick", "relay"):
        logging.error(f"Invalid action: {action}")
        raise SystemExit(1)

    layout = TmuxLayout(window)
    panes = layout.list_selectable_panes()

    if config.renderer == "overlay":
        for pane in panes:
            pane.lines = layout.capture_pane(pane)
        _, terminal_height = get_terminal_size()
        renderer = OverlayRenderer(
            screen,
            panes,
            terminal_height,
            border=config.border,
            overlay_window=get_current_window_id(),
        )
    else:
        renderer = StatusRenderer()

    picker = PanePicker(config, layout, renderer)
    if action == "relay":
        return picker.relay(panes)
    return picker.pick(panes)


def run(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv if argv is None else argv
    action = argv[1] if len(argv) > 1 else "pick"
    try:
        config = Config.from_tmux()
        # The overlay hides the window the relayed motions act on
        if action == "relay" and config.renderer == "overlay":
            raise ConfigError("relay needs @panepick-renderer set to status")
    except ConfigError as e:
        setup_logging()
        logging.error(f"Invalid configuration: {e}")
        sh(["tmux", "display-message", f"panepick: {e}"])
        return 1

    setup_logging(config.use_curses)
    screen: Optional[Screen] = None
    if config.renderer == "overlay":
        screen = Curses() if config.use_curses else AnsiSequence()
        screen.init()
    try:
        main(screen, config, argv)
    except KeyboardInterrupt:
        logging.info("Operation cancelled by user")
    except Exception as e:
        logging.error(f"Error occurred: {str(e)}", exc_info=True)
        return 1
    finally:
        if screen is not None:
            screen.cleanup()
    return 0


if __name__ == "__main__":
    sys.exit(run())
