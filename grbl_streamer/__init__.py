"""GRBL Streamer - G-code streaming controller for GRBL 1.1.

Queue management with character-counting flow control, response and status
parsing, realtime override injection and resume-from-line recovery.
"""

__version__ = "1.0"
__author__ = "Bob Kolbasowski"

from .command_queue import CommandQueue
from .controller import GrblController
from .event_bus import EventBus
from .machine_state import ControllerStateModel
from .program import ProgramLine, clean_gcode_line, load_program_file, number_program_lines
from .response_parser import ParsedResponse, ResponseKind, ResponseParser, parse_response
from .resume import ResumeCoordinator, build_resume_preamble
from .transport import open_transport
from .types import (
    Command,
    CommandKind,
    ControllerSnapshot,
    MachineState,
    ResumeResult,
    StatusReport,
)
from .utils import ControllerConfig

__all__ = [
    "Command",
    "CommandKind",
    "CommandQueue",
    "ControllerConfig",
    "ControllerSnapshot",
    "ControllerStateModel",
    "EventBus",
    "GrblController",
    "MachineState",
    "ParsedResponse",
    "ProgramLine",
    "ResponseKind",
    "ResponseParser",
    "ResumeCoordinator",
    "ResumeResult",
    "StatusReport",
    "build_resume_preamble",
    "clean_gcode_line",
    "load_program_file",
    "number_program_lines",
    "open_transport",
    "parse_response",
]
