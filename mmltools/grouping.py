""" Harmony, group and tie/slur resolution.

Sounding commands are first turned into a list of Units (a note, a chord, or
a rest, each with its sounds placed in time). A PhraseResolver then feeds the
units of one voice through tie handling and writes NoteOn/NoteOff events:

- A sound is held open until the next unit is known. If `&` came in between,
  sounds with the same key are merged into one event (tie); the other held
  sounds end at their full nominal length (slur).
- Otherwise held sounds end after their gate, before the next NoteOn.
"""

import random
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, List, Optional, Tuple

from more_itertools import peekable

from mmltools import commands as cmd
from mmltools.commands import Command
from mmltools.errors import EmptyGroupError, InvalidParameterError
from mmltools.events import EventEmitter
from mmltools.voice import MAX_GATE, VoiceState


@dataclass
class Sound:
    key: int
    velocity: int
    timing: int
    start: Fraction
    nominal_end: Fraction       # end of the note's full length
    sounding_end: Fraction      # end after gate


@dataclass
class Unit:
    sounds: List[Sound] = field(default_factory=list)
    rest: bool = False
    tie: bool = False           # followed by `&`


def _merge_tie(held: List[Sound], sounds: List[Sound]) -> Tuple[List[Sound], List[Sound], List[Sound]]:
    """ Returns (sounds continuing a held sound, new sounds, held sounds not continued). """
    by_key = {sound.key: sound for sound in held}
    continued_by_key = {}
    continued = []
    new = []
    for sound in sounds:
        prev = by_key.pop(sound.key, None)
        if prev is not None:
            prev.nominal_end = sound.nominal_end
            prev.sounding_end = sound.sounding_end
            continued_by_key[sound.key] = prev
            continued.append(prev)
        elif sound.key in continued_by_key:
            # A key already carried by the tie keeps sounding.
            _extend(continued_by_key[sound.key], sound)
        else:
            new.append(sound)
    return continued, new, list(by_key.values())


def _extend(sound: Sound, other: Sound):
    sound.nominal_end = max(sound.nominal_end, other.nominal_end)
    sound.sounding_end = max(sound.sounding_end, other.sounding_end)


def _merge_unison(sounds: List[Sound]) -> List[Sound]:
    """ Merges overlapping sounds of the same key, so a key is never started twice at once. """
    out: List[Sound] = []
    by_key = {}
    for sound in sounds:
        prev = None
        for kept in by_key.get(sound.key, []):
            if kept.start < sound.nominal_end and sound.start < kept.nominal_end:
                prev = kept
                break
        if prev is None:
            out.append(sound)
            by_key.setdefault(sound.key, []).append(sound)
        else:
            prev.start = min(prev.start, sound.start)
            _extend(prev, sound)
    return out


def _join_ties(units: List[Unit]) -> List[Sound]:
    """ Flattens units into sounds, merging tied sounds. Used for groups nested in a chord. """
    out: List[Sound] = []
    held: List[Sound] = []
    tie = False
    for unit in units:
        if unit.rest:
            held, tie = [], False
            continue
        if tie:
            continued, new, _ = _merge_tie(held, unit.sounds)
            held = continued + new
        else:
            new = unit.sounds
            held = list(new)
        out.extend(new)
        tie = unit.tie
    return out


class UnitBuilder:
    """ Converts sounding commands into Units, reading and updating one voice's state. """

    def __init__(self, state: VoiceState, ticks_per_whole: int, rng: random.Random):
        self.state = state
        self.ticks_per_whole = ticks_per_whole
        self.rng = rng

    def build(self, command: Command, start: Fraction, span: Optional[Fraction] = None,
              shift: int = 0) -> Tuple[List[Unit], Fraction]:
        """ Returns (units, ticks consumed). `span` overrides the command's own length.
        `shift` is an octave shift inherited from an enclosing harmony. """
        if isinstance(command, cmd.Note):
            dur = self._span(command, span)
            return [Unit([self.sound(command, start, dur, shift=shift)])], dur

        if isinstance(command, cmd.Rest):
            return [Unit(rest=True)], self._span(command, span)

        if isinstance(command, cmd.Harmony):
            dur = self._span(command, span)
            return [Unit(self.chord(command, start, dur, shift))], dur

        if isinstance(command, cmd.GroupNotes):
            return self.group(command, start, span, shift)

        raise TypeError(f'invalid sounding command type={type(command)}, programmer error')

    def _span(self, command: Command, span: Optional[Fraction]) -> Fraction:
        if span is not None:
            return span
        return self.state.duration(command.length, self.ticks_per_whole, command.pos)

    def sound(self, note: cmd.Note, start: Fraction, dur: Fraction,
              shift: int = 0, gate: Optional[int] = None) -> Sound:
        params = self.state.note_params(note, self.rng, shift=shift, gate=gate)
        sounding = dur * params.gate / MAX_GATE
        return Sound(
            key=params.key,
            velocity=params.velocity,
            timing=params.timing,
            start=start,
            nominal_end=start + dur,
            sounding_end=start + sounding,
        )

    def apply_octave(self, command: Command):
        state = self.state
        if isinstance(command, cmd.OctaveUp):
            state.shift_octave(1, command.pos)
        elif isinstance(command, cmd.OctaveDown):
            state.shift_octave(-1, command.pos)
        elif isinstance(command, cmd.OctaveUpOnce):
            state.shift_octave_once(1)
        elif isinstance(command, cmd.OctaveDownOnce):
            state.shift_octave_once(-1)
        else:
            raise TypeError(f'invalid octave command type={type(command)}, programmer error')

    def chord(self, harmony: cmd.Harmony, start: Fraction, dur: Fraction,
              shift: int = 0) -> List[Sound]:
        """ All members start together and share `dur`. A pending one-shot
        octave shift applies to every note of the chord, including notes of
        nested groups, until an octave command inside the chord discards it. """
        _check_members(harmony, 'harmony')
        shift += self.state.take_octave_once()

        sounds = []
        for member in harmony.members:
            if isinstance(member, cmd.Note):
                sounds.append(self.sound(member, start, dur, shift=shift, gate=harmony.gate))
            elif isinstance(member, cmd.GroupNotes):
                units, _ = self.group(member, start, dur, shift)
                sounds.extend(_join_ties(units))
            else:
                self.apply_octave(member)
                shift = 0
        return _merge_unison(sounds)

    def group(self, group: cmd.GroupNotes, start: Fraction, span: Optional[Fraction],
              shift: int = 0) -> Tuple[List[Unit], Fraction]:
        """ Each sounding member gets total / (divisor or member count). """
        nslot = _check_members(group, 'group')
        total = self._span(group, span)

        divisor = nslot if group.divisor is None else group.divisor
        if divisor <= 0:
            raise InvalidParameterError(f'invalid group divisor {divisor}', group.pos)
        slot = total / divisor

        units: List[Unit] = []
        time = start
        members = peekable(group.members)
        for member in members:
            if isinstance(member, cmd.TieSlur):
                raise InvalidParameterError('tie without a preceding note', member.pos)
            if not isinstance(member, cmd.SOUNDING_TYPES):
                self.apply_octave(member)
                shift = 0
                continue

            member_units, consumed = self.build(member, time, slot, shift)
            if isinstance(members.peek(None), cmd.TieSlur):
                tie = next(members)
                if member_units[-1].rest:
                    raise InvalidParameterError('tie without a preceding note', tie.pos)
                member_units[-1].tie = True
            units.extend(member_units)
            time += consumed

        return units, time - start


def _check_members(command, name: str) -> int:
    nsound = sum(isinstance(member, cmd.SOUNDING_TYPES) for member in command.members)
    if nsound == 0:
        raise EmptyGroupError(f'empty {name}', command.pos)
    return nsound


class PhraseResolver:
    """ Writes one voice's units as NoteOn/NoteOff events, handling ties and slurs. """

    def __init__(self, voice: int, emitter: EventEmitter):
        self.voice = voice
        self.emitter = emitter
        self.held: List[Sound] = []
        self.tie_pending = False

    def feed(self, units: List[Unit]):
        for unit in units:
            if unit.rest:
                self.flush()
            else:
                self.play(unit.sounds)
            if unit.tie:
                self.tie()

    def tie(self, pos=None):
        if not self.held:
            raise InvalidParameterError('tie without a preceding note', pos)
        self.tie_pending = True

    def play(self, sounds: List[Sound]):
        if self.tie_pending:
            continued, new, released = _merge_tie(self.held, sounds)
            for sound in released:
                self._note_off(sound, sound.nominal_end)
            self.held = continued + new
        else:
            next_on = {}
            for sound in sounds:
                on = _on_time(sound)
                next_on[sound.key] = min(next_on.get(sound.key, on), on)
            self.flush(next_on)
            new = sounds
            self.held = list(sounds)
        self.tie_pending = False

        for sound in new:
            self.emitter.note_on(self.voice, _on_time(sound), sound.key, sound.velocity)

    def flush(self, next_on: Optional[Dict[int, Fraction]] = None):
        """ Ends every held sound after its gate. A sound whose key starts
        again in `next_on` ends no later than that NoteOn. """
        next_on = next_on or {}
        for sound in self.held:
            self._note_off(sound, sound.sounding_end, next_on.get(sound.key))
        self.held = []
        self.tie_pending = False

    def _note_off(self, sound: Sound, end: Fraction, limit: Optional[Fraction] = None):
        time = end + sound.timing
        if limit is not None:
            time = max(min(time, limit), _on_time(sound))
        self.emitter.note_off(self.voice, time, sound.key)


def _on_time(sound: Sound) -> Fraction:
    return sound.start + sound.timing
