""" Loop stack for `[count ... : ... ]`.

Every pass plays the whole body, except the final pass, which stops at the
first `:` and leaves the loop. `[3 c : d]` plays c d c d c.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from mmltools.commands import Command, LoopBegin, LoopBreak, LoopEnd
from mmltools.errors import InvalidParameterError, UnbalancedLoopError

DEFAULT_LOOP_COUNT = 2


@dataclass
class LoopFrame:
    start: int          # index of the first body command
    end: int            # index of the matching LoopEnd
    remaining: int      # passes left, including the current one
    break_index: Optional[int] = None


def match_loops(commands: Sequence[Command]) -> Dict[int, int]:
    """ Maps the index of every LoopBegin to the index of its LoopEnd.
    Raises UnbalancedLoopError on a stray `]` or `:`, or an unclosed `[`. """
    ends = {}
    open_loops: List[int] = []

    for idx, command in enumerate(commands):
        if isinstance(command, LoopBegin):
            open_loops.append(idx)
        elif isinstance(command, LoopBreak):
            if not open_loops:
                raise UnbalancedLoopError('loop break ":" outside of a loop', command.pos)
        elif isinstance(command, LoopEnd):
            if not open_loops:
                raise UnbalancedLoopError('loop end "]" without matching "["', command.pos)
            ends[open_loops.pop()] = idx

    if open_loops:
        begin = commands[open_loops[-1]]
        raise UnbalancedLoopError('loop "[" is never closed', begin.pos)
    return ends


class LoopStack:
    """ Drives the interpreter's program counter through loops.
    Each method takes the index of the current command and returns the index
    of the next command to execute. """

    def __init__(self, commands: Sequence[Command], default_count: int = DEFAULT_LOOP_COUNT):
        self.ends = match_loops(commands)
        self.default_count = default_count
        self.frames: List[LoopFrame] = []

    @property
    def depth(self) -> int:
        return len(self.frames)

    def begin(self, index: int, command: LoopBegin) -> int:
        count = self.default_count if command.count is None else command.count
        if count < 0:
            raise InvalidParameterError(f'invalid loop count {count}', command.pos)

        end = self.ends[index]
        if count == 0:
            return end + 1

        self.frames.append(LoopFrame(start=index + 1, end=end, remaining=count))
        return index + 1

    def loop_break(self, index: int) -> int:
        frame = self.frames[-1]
        frame.break_index = index
        if frame.remaining == 1:
            self.frames.pop()
            return frame.end + 1
        return index + 1

    def end(self, index: int, command: LoopEnd) -> int:
        if not self.frames:
            raise UnbalancedLoopError('loop end "]" without matching "["', command.pos)

        frame = self.frames[-1]
        frame.remaining -= 1
        if frame.remaining > 0:
            return frame.start

        self.frames.pop()
        return index + 1
