""" Performance events, the per-voice event emitter, and the merged output. """

import enum
import heapq
from collections import Counter
from dataclasses import dataclass, field, replace
from fractions import Fraction
from typing import Dict, List, NamedTuple, Optional, Union


class EventKind(enum.Enum):
    NOTE_ON = 'note_on'
    NOTE_OFF = 'note_off'
    PITCH_BEND = 'pitch_bend'
    CONTROL_CHANGE = 'control_change'


class NoteOn(NamedTuple):
    key: int
    velocity: int


class NoteOff(NamedTuple):
    key: int


class PitchBend(NamedTuple):
    value: int


class ControlChange(NamedTuple):
    controller: int
    value: int


Payload = Union[NoteOn, NoteOff, PitchBend, ControlChange]


@dataclass(frozen=True)
class Event:
    time: int       # ticks from the start of the performance
    voice: int
    kind: EventKind
    payload: Payload

    def to_dict(self) -> dict:
        out = dict(time=self.time, voice=self.voice, kind=self.kind.value)
        out.update(self.payload._asdict())
        return out


def to_tick(time: Fraction) -> int:
    return max(0, round(time))


def merge_events(streams: Dict[int, List[Event]]) -> List[Event]:
    """ Merges per-voice event lists, ordered by (time, voice).
    Events of one voice at the same time keep their emission order. """
    sorted_streams = [
        sorted(streams[voice], key=lambda e: e.time) for voice in sorted(streams)
    ]
    return list(heapq.merge(*sorted_streams, key=lambda e: (e.time, e.voice)))


class EventEmitter:
    """ Owns one time cursor and one event list per voice. """

    def __init__(self):
        self.streams: Dict[int, List[Event]] = {}
        self.cursors: Dict[int, Fraction] = {}

    def cursor(self, voice: int) -> Fraction:
        return self.cursors.get(voice, Fraction(0))

    def advance(self, voice: int, ticks: Fraction):
        self.cursors[voice] = self.cursor(voice) + ticks

    def emit(self, voice: int, time: Fraction, kind: EventKind, payload: Payload):
        event = Event(to_tick(time), voice, kind, payload)
        self.streams.setdefault(voice, []).append(event)

    def note_on(self, voice: int, time: Fraction, key: int, velocity: int):
        self.emit(voice, time, EventKind.NOTE_ON, NoteOn(key, velocity))

    def note_off(self, voice: int, time: Fraction, key: int):
        self.emit(voice, time, EventKind.NOTE_OFF, NoteOff(key))

    def pitch_bend(self, voice: int, time: Fraction, value: int):
        self.emit(voice, time, EventKind.PITCH_BEND, PitchBend(value))

    def control_change(self, voice: int, time: Fraction, controller: int, value: int):
        self.emit(voice, time, EventKind.CONTROL_CHANGE, ControlChange(controller, value))

    def events(self) -> List[Event]:
        return merge_events(self.streams)


@dataclass
class Performance:
    """ Output of a compilation.

    `events` holds the whole performance. `play_from` is the tick of the last
    `?` marker, if any; `from_here()` renders from that point on. """
    events: List[Event] = field(default_factory=list)
    play_from: Optional[int] = None

    def voices(self) -> List[int]:
        return sorted({event.voice for event in self.events})

    def from_here(self) -> List[Event]:
        """ Events at or after `play_from`, shifted to start at tick 0.

        The latest pitch bend and control change values before the cut are
        replayed at tick 0. Notes sounding across the cut are dropped. """
        if self.play_from is None:
            return list(self.events)
        cut = self.play_from

        chased: Dict[tuple, Event] = {}
        sounding = Counter()
        out = []

        for event in self.events:
            voice, payload = event.voice, event.payload
            if event.time < cut:
                if event.kind == EventKind.PITCH_BEND:
                    chased[voice, EventKind.PITCH_BEND] = event
                elif event.kind == EventKind.CONTROL_CHANGE:
                    chased[voice, EventKind.CONTROL_CHANGE, payload.controller] = event
                elif event.kind == EventKind.NOTE_ON:
                    sounding[voice, payload.key] += 1
                elif event.kind == EventKind.NOTE_OFF and sounding[voice, payload.key]:
                    sounding[voice, payload.key] -= 1
                continue

            if event.kind == EventKind.NOTE_OFF and sounding[voice, payload.key]:
                sounding[voice, payload.key] -= 1
                continue
            out.append(replace(event, time=event.time - cut))

        chase = [replace(event, time=0) for event in chased.values()]
        return sorted(chase + out, key=lambda e: (e.time, e.voice))
