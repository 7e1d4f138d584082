from enum import IntEnum
from typing import Callable, Optional


class ReportingLevel(IntEnum):
    QUIET = 0
    BASIC = 1
    VERBOSE = 2


def color_text(text, color_code):
    return f"\033[{color_code}m{text}\033[0m"

def debug_text(text):
    return f"{color_text('DEBUG', '31')} {text}"

def info_text(text):
    return f"{color_text('INFO', '34')}  {text}"

def warning_text(text):
    return f"{color_text('WARN', '33')}  {text}"

def error_text(text):
    return f"{color_text('ERROR', '41')} {text}"

def sending_text(text):
    return f"{color_text('SENDING  ', '32')} {text}"

def received_text(text):
    return f"{color_text('RECEIVED ', '35')} {text}"


class Reporter:
    """Console reporter shared by the session, scheduler and watcher.

    Warnings and errors are always emitted; ``info`` needs BASIC and the
    engine traffic and debug lines need VERBOSE.
    """

    def __init__(
        self,
        level: ReportingLevel = ReportingLevel.BASIC,
        sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.level = level
        self._sink = sink or print

    def info(self, message: str) -> None:
        if self.level >= ReportingLevel.BASIC:
            self._sink(info_text(message))

    def debug(self, message: str) -> None:
        if self.level >= ReportingLevel.VERBOSE:
            self._sink(debug_text(message))

    def sending(self, message: str) -> None:
        if self.level >= ReportingLevel.VERBOSE:
            self._sink(sending_text(message))

    def received(self, message: str) -> None:
        if self.level >= ReportingLevel.VERBOSE:
            self._sink(received_text(message))

    def warning(self, message: str) -> None:
        self._sink(warning_text(message))

    def error(self, message: str) -> None:
        self._sink(error_text(message))


QUIET_REPORTER = Reporter(ReportingLevel.QUIET, sink=lambda _line: None)


def get_piece_unicode(piece):
    piece_unicode = {
        'K': '♔', 'Q': '♕', 'R': '♖', 'B': '♗', 'N': '♘', 'P': '♙',
        'k': '♚', 'q': '♛', 'r': '♜', 'b': '♝', 'n': '♞', 'p': '♟'
    }
    return piece_unicode[piece.symbol()]
