""" Per-voice performance state. """

import random
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, Optional

from mmltools.commands import NOTE_SEMITONES, Length, Note
from mmltools.config import CompilerConfig, VoiceDefaults
from mmltools.errors import InvalidParameterError, Pos
from mmltools.util import clamp, coalesce

OCTAVE = 12
MIN_OCTAVE = 0
MAX_OCTAVE = 9
MAX_KEY = 127
MAX_VELOCITY = 127
MAX_GATE = 100
MAX_CONTROL = 127
MIN_PITCH_BEND = -0x2000
MAX_PITCH_BEND = 0x1FFF


def check_range(caption: str, value: int, lo: int, hi: int, pos: Optional[Pos] = None) -> int:
    if not lo <= value <= hi:
        raise InvalidParameterError(f'invalid {caption} {value} (must be {lo}..{hi})', pos)
    return value


def length_ticks(length: Length, ticks_per_whole: int, pos: Optional[Pos] = None) -> Fraction:
    if length.denominator <= 0 or length.dots < 0:
        raise InvalidParameterError(f'invalid note length {length.denominator}', pos)
    return length.ticks(ticks_per_whole)


@dataclass
class NoteParams:
    """ Snapshot of everything a note needs, taken when the note is reached. """
    key: int
    velocity: int
    gate: int
    timing: int


@dataclass
class VoiceState:
    voice: int
    octave: int = 4
    length: Length = Length(4)
    velocity: int = 100
    velocity_random: int = 0
    gate: int = 100
    timing: int = 0
    timing_random: int = 0
    pitch_bend: int = 0
    controls: Dict[int, int] = field(default_factory=dict)

    # Pending `/" shift, consumed by the next note.
    octave_once: int = 0

    @classmethod
    def from_defaults(cls, voice: int, defaults: VoiceDefaults) -> 'VoiceState':
        return cls(
            voice=voice,
            octave=check_range('octave', defaults.octave, MIN_OCTAVE, MAX_OCTAVE),
            length=Length(defaults.length),
            velocity=check_range('velocity', defaults.velocity, 0, MAX_VELOCITY),
            gate=check_range('gate', defaults.gate, 0, MAX_GATE),
            timing=defaults.timing,
        )

    # **** Setters ****

    def set_length(self, length: Length, ticks_per_whole: int, pos: Optional[Pos] = None):
        length_ticks(length, ticks_per_whole, pos)
        self.length = length

    def set_octave(self, octave: int, pos: Optional[Pos] = None):
        self.octave = check_range('octave', octave, MIN_OCTAVE, MAX_OCTAVE, pos)
        self.octave_once = 0

    def shift_octave(self, delta: int, pos: Optional[Pos] = None):
        self.set_octave(self.octave + delta, pos)

    def shift_octave_once(self, delta: int):
        """ Replaces any pending one-shot shift. """
        self.octave_once = delta

    def take_octave_once(self) -> int:
        shift = self.octave_once
        self.octave_once = 0
        return shift

    def set_velocity(self, velocity: int, rand: Optional[int] = None, pos: Optional[Pos] = None):
        self.velocity = check_range('velocity', velocity, 0, MAX_VELOCITY, pos)
        if rand is not None:
            self.velocity_random = check_range('velocity random', rand, 0, MAX_VELOCITY, pos)

    def shift_velocity(self, delta: int, pos: Optional[Pos] = None):
        self.set_velocity(self.velocity + delta, pos=pos)

    def set_gate(self, gate: int, pos: Optional[Pos] = None):
        self.gate = check_range('gate', gate, 0, MAX_GATE, pos)

    def set_timing(self, timing: int, rand: Optional[int] = None, pos: Optional[Pos] = None):
        self.timing = timing
        if rand is not None:
            if rand < 0:
                raise InvalidParameterError(f'invalid timing random {rand}', pos)
            self.timing_random = rand

    def set_pitch_bend(self, value: int, pos: Optional[Pos] = None):
        self.pitch_bend = check_range('pitch bend', value, MIN_PITCH_BEND, MAX_PITCH_BEND, pos)

    def set_control(self, controller: int, value: int, pos: Optional[Pos] = None):
        check_range('controller', controller, 0, MAX_CONTROL, pos)
        self.controls[controller] = check_range('control value', value, 0, MAX_CONTROL, pos)

    # **** Note resolution ****

    def duration(self, length: Optional[Length], ticks_per_whole: int,
                 pos: Optional[Pos] = None) -> Fraction:
        return length_ticks(coalesce(length, self.length), ticks_per_whole, pos)

    def key_for(self, note: Note, shift: int = 0) -> int:
        if note.key is not None:
            key = note.key
        else:
            semitone = NOTE_SEMITONES[note.letter] + note.accidental
            key = OCTAVE * (self.octave + shift + 1) + semitone
        return check_range('note', key, 0, MAX_KEY, note.pos)

    def note_params(self, note: Note, rng: random.Random, shift: int = 0,
                    gate: Optional[int] = None) -> NoteParams:
        """ Resolves a note against the current state. Note overrides win over
        `gate` (a harmony's shared gate), which wins over the voice state.
        Consumes the pending one-shot octave shift. """
        shift += self.take_octave_once()
        key = self.key_for(note, shift)

        if note.velocity is not None:
            velocity = check_range('velocity', note.velocity, 0, MAX_VELOCITY, note.pos)
        else:
            velocity = self.velocity
            if self.velocity_random:
                velocity += rng.randint(-self.velocity_random, self.velocity_random)
                velocity = clamp(velocity, 0, MAX_VELOCITY)

        gate = check_range('gate', coalesce(note.gate, gate, self.gate), 0, MAX_GATE, note.pos)

        if note.timing is not None:
            timing = note.timing
        else:
            timing = self.timing
            if self.timing_random:
                timing += rng.randint(-self.timing_random, self.timing_random)

        return NoteParams(key, velocity, gate, timing)


class VoiceMap(dict):
    """ voice id -> VoiceState. Unaddressed voices are created with their defaults. """

    def __init__(self, config: CompilerConfig):
        super().__init__()
        self.config = config

    def __missing__(self, voice: int) -> VoiceState:
        state = VoiceState.from_defaults(voice, self.config.voice_defaults(voice))
        self[voice] = state
        return state
