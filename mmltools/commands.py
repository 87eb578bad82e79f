""" Command variants produced by the tokenizer and consumed by the interpreter.

Every command is a frozen dataclass whose first field is its source position.
Positions never take part in equality, so `tokenize('c')` == `tokenize(' c')`.
"""

import enum
from dataclasses import dataclass, field
from fractions import Fraction
from typing import NamedTuple, Optional, Tuple

from mmltools.errors import Pos


NOTE_SEMITONES = dict(c=0, d=2, e=4, f=5, g=7, a=9, b=11)


class Length(NamedTuple):
    """ A note length: `denominator` 4 is a quarter note, each dot adds half
    of the previous value. """
    denominator: int
    dots: int = 0

    def ticks(self, ticks_per_whole: int) -> Fraction:
        base = Fraction(ticks_per_whole, self.denominator)
        return base * (2 - Fraction(1, 2 ** self.dots))


def _pos():
    return field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Command:
    pos: Optional[Pos] = _pos()


# **** notes ****

@dataclass(frozen=True)
class Note(Command):
    """ A letter note (`letter` set) or a MIDI key number (`key` set).
    Override fields left at None inherit the voice state. """
    letter: Optional[str] = None
    accidental: int = 0
    key: Optional[int] = None
    length: Optional[Length] = None
    velocity: Optional[int] = None
    gate: Optional[int] = None
    timing: Optional[int] = None


@dataclass(frozen=True)
class Rest(Command):
    length: Optional[Length] = None


@dataclass(frozen=True)
class Harmony(Command):
    members: Tuple[Command, ...] = ()
    length: Optional[Length] = None
    gate: Optional[int] = None


@dataclass(frozen=True)
class GroupNotes(Command):
    members: Tuple[Command, ...] = ()
    length: Optional[Length] = None
    divisor: Optional[int] = None


@dataclass(frozen=True)
class TieSlur(Command):
    pass


# **** voice parameters ****

@dataclass(frozen=True)
class SetLength(Command):
    length: Length = Length(4)


@dataclass(frozen=True)
class SetOctave(Command):
    value: int = 4


@dataclass(frozen=True)
class SetPitchBend(Command):
    value: int = 0


@dataclass(frozen=True)
class SetGate(Command):
    value: int = 100


@dataclass(frozen=True)
class SetVelocity(Command):
    value: int = 100
    random: Optional[int] = None


@dataclass(frozen=True)
class SetTiming(Command):
    value: int = 0
    random: Optional[int] = None


@dataclass(frozen=True)
class SetControlChange(Command):
    """ `y7,100` sets CC 7. `y7,0,127,1` sweeps CC 7 from 0 to 127 over a
    whole note. """
    controller: int = 0
    value: int = 0
    end: Optional[int] = None
    sweep: Optional[Length] = None


@dataclass(frozen=True)
class OctaveUp(Command):
    pass


@dataclass(frozen=True)
class OctaveDown(Command):
    pass


@dataclass(frozen=True)
class OctaveUpOnce(Command):
    pass


@dataclass(frozen=True)
class OctaveDownOnce(Command):
    pass


@dataclass(frozen=True)
class VelocityUp(Command):
    delta: Optional[int] = None


@dataclass(frozen=True)
class VelocityDown(Command):
    delta: Optional[int] = None


@dataclass(frozen=True)
class VoiceSelect(Command):
    channel: int = 1
    bank_lsb: Optional[int] = None
    bank_msb: Optional[int] = None


# **** structure ****

@dataclass(frozen=True)
class MacroDefine(Command):
    name: str = ''
    body: Tuple[Command, ...] = ()


@dataclass(frozen=True)
class MacroRef(Command):
    name: str = ''


@dataclass(frozen=True)
class RhythmMacroDefine(Command):
    id: str = ''
    body: Tuple[Command, ...] = ()


@dataclass(frozen=True)
class RhythmMacroRef(Command):
    id: str = ''


@dataclass(frozen=True)
class LoopBegin(Command):
    count: Optional[int] = None


@dataclass(frozen=True)
class LoopBreak(Command):
    pass


@dataclass(frozen=True)
class LoopEnd(Command):
    pass


@dataclass(frozen=True)
class PlayFromHere(Command):
    pass


class CommentKind(enum.Enum):
    RANGE = 'range'
    LINE = 'line'
    DEBUG = 'debug'


@dataclass(frozen=True)
class Comment(Command):
    kind: CommentKind = CommentKind.LINE
    text: str = ''


# Every variant the interpreter must handle. Adding a command means adding it here.
COMMAND_TYPES = (
    Note, Rest, Harmony, GroupNotes, TieSlur,
    SetLength, SetOctave, SetPitchBend, SetGate, SetVelocity, SetTiming,
    SetControlChange, OctaveUp, OctaveDown, OctaveUpOnce, OctaveDownOnce,
    VelocityUp, VelocityDown, VoiceSelect,
    MacroDefine, MacroRef, RhythmMacroDefine, RhythmMacroRef,
    LoopBegin, LoopBreak, LoopEnd, PlayFromHere, Comment,
)

# Commands that may appear inside `'...'` and `{...}`.
SOUNDING_TYPES = (Note, Rest, Harmony, GroupNotes)
