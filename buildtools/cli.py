"""Console output: markup rendering, a log handler and a log-backed writer."""

from __future__ import annotations

import logging
import re
import sys
from typing import IO, Optional, Union

_RESET = "\x1b[0m"

_COLOURS = {
    "black": 30,
    "red": 31,
    "green": 32,
    "yellow": 33,
    "blue": 34,
    "magenta": 35,
    "cyan": 36,
    "lightgrey": 37,
    "darkgrey": 90,
    "lightred": 91,
    "lightgreen": 92,
    "lightyellow": 93,
    "lightblue": 94,
    "lightmagenta": 95,
    "lightcyan": 96,
    "white": 97,
}

# tag -> (category, code, code that switches the category off)
_TAGS: dict[str, tuple[str, int, int]] = {}
for _name, _code in _COLOURS.items():
    _TAGS[_name] = ("fg", _code, 39)
    _TAGS[f"bg-{_name}"] = ("bg", _code + 10, 49)
_TAGS.update(
    {
        "bold": ("bold", 1, 22),
        "dim": ("dim", 2, 22),
        "italic": ("italic", 3, 23),
        "underline": ("underline", 4, 24),
        "blink": ("blink", 5, 25),
        "reverse": ("reverse", 7, 27),
        "hidden": ("hidden", 8, 28),
        "strikethrough": ("strikethrough", 9, 29),
    }
)

_TAG_PATTERN = re.compile(r"<(/?)([a-z][a-z\-]*)>")


def _sgr(code: int) -> str:
    return f"\x1b[{code}m"


def render_markup(text: str) -> str:
    """Turn tags such as ``<green>...</green>`` into terminal escape sequences."""
    stacks: dict[str, list[int]] = {}

    def replace(match: re.Match) -> str:
        closing, tag = match.group(1), match.group(2)
        known = _TAGS.get(tag)
        if known is None:
            return match.group(0)
        category, code, off = known
        stack = stacks.setdefault(category, [])
        if not closing:
            stack.append(code)
            return _sgr(code)
        if stack:
            stack.pop()
        return _sgr(stack[-1]) if stack else _sgr(off)

    return _RESET + _TAG_PATTERN.sub(replace, text) + _RESET


class MarkupHandler(logging.StreamHandler):
    """Write each log message, with its markup rendered, to a stream."""

    def __init__(self, stream: Optional[IO[str]] = None) -> None:
        super().__init__(sys.stdout if stream is None else stream)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.stream.write(render_markup(record.getMessage()))
            self.flush()
        except Exception:
            self.handleError(record)


class LogWriter:
    """A text sink that logs every line written to it at info level."""

    def __init__(self, logger: logging.Logger) -> None:
        if not isinstance(logger, logging.Logger):
            raise TypeError("LogWriter needs a logging.Logger")
        self.logger = logger
        self.level = logger.level

    def write(self, data: Union[bytes, str]) -> int:
        text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        for line in lines:
            self.logger.info("%s\n", line.removesuffix("\r"))
        return len(data)

    def flush(self) -> None:
        """Flush the handlers of the logger and of its ancestors."""
        logger: Optional[logging.Logger] = self.logger
        while logger is not None:
            for handler in logger.handlers:
                handler.flush()
            logger = logger.parent if logger.propagate else None


def is_verbose(logger: object) -> bool:
    """True when the logger lets debug messages through."""
    if isinstance(logger, logging.Logger):
        return logger.getEffectiveLevel() <= logging.DEBUG
    return False