""" The stateful interpreter: expands macros, walks loops, tracks voice state,
and resolves notes into a time-ordered Performance. """

import logging
import random
from fractions import Fraction
from typing import Callable, Dict, Iterable, List, Optional

from mmltools import commands as cmd
from mmltools.commands import Command
from mmltools.config import CompilerConfig
from mmltools.errors import MMLError, VoiceReferenceError
from mmltools.events import EventEmitter, Performance, to_tick
from mmltools.grouping import PhraseResolver, UnitBuilder
from mmltools.loops import LoopStack
from mmltools.macros import MacroTable, expand
from mmltools.tokenizer import tokenize
from mmltools.voice import MAX_CONTROL, VoiceMap, VoiceState, check_range

log = logging.getLogger(__name__)

BANK_SELECT_MSB = 0
BANK_SELECT_LSB = 32


class Interpreter:
    """ One compilation pass. All state lives on the instance, so separate
    Interpreters never interfere. """

    def __init__(self, config: Optional[CompilerConfig] = None):
        if config is None:
            config = CompilerConfig()
        self.config = config

        self.macros = MacroTable()
        self.voices = VoiceMap(config)
        self.emitter = EventEmitter()
        self.resolvers: Dict[int, PhraseResolver] = {}
        self.rng = random.Random(config.seed)

        self.active = self._check_voice(config.default_voice)
        self.play_from: Optional[Fraction] = None

        self.commands: List[Command] = []
        self.loops: Optional[LoopStack] = None
        self.pc = 0

    # **** Entry point ****

    def run(self, commands: Iterable[Command]) -> Performance:
        config = self.config
        self.commands = expand(commands, self.macros, config.max_macro_depth)
        self.loops = LoopStack(self.commands, config.loop_count)
        self.pc = 0

        while self.pc < len(self.commands):
            command = self.commands[self.pc]
            try:
                next_pc = HANDLERS[type(command)](self, command)
            except MMLError as e:
                if e.pos is None:
                    e.pos = command.pos
                raise
            self.pc = self.pc + 1 if next_pc is None else next_pc

        for resolver in self.resolvers.values():
            resolver.flush()

        performance = Performance(
            events=self.emitter.events(),
            play_from=None if self.play_from is None else to_tick(self.play_from),
        )
        log.debug('compiled %d events for voices %s',
                  len(performance.events), performance.voices())
        return performance

    # **** Helpers ****

    @property
    def state(self) -> VoiceState:
        return self.voices[self.active]

    @property
    def cursor(self) -> Fraction:
        return self.emitter.cursor(self.active)

    def resolver(self) -> PhraseResolver:
        voice = self.active
        if voice not in self.resolvers:
            self.resolvers[voice] = PhraseResolver(voice, self.emitter)
        return self.resolvers[voice]

    def _check_voice(self, voice: int, pos=None) -> int:
        if not 1 <= voice <= self.config.voice_count:
            raise VoiceReferenceError(
                f'invalid voice {voice} (must be 1..{self.config.voice_count})', pos)
        return voice

    # **** Sounding commands ****

    def play(self, command: Command):
        builder = UnitBuilder(self.state, self.config.ticks_per_whole, self.rng)
        units, consumed = builder.build(command, self.cursor)
        self.resolver().feed(units)
        self.emitter.advance(self.active, consumed)

    def tie(self, command: cmd.TieSlur):
        self.resolver().tie(command.pos)

    # **** Voice parameters ****

    def set_length(self, command: cmd.SetLength):
        self.state.set_length(command.length, self.config.ticks_per_whole, command.pos)

    def set_octave(self, command: cmd.SetOctave):
        self.state.set_octave(command.value, command.pos)

    def octave_up(self, command: cmd.OctaveUp):
        self.state.shift_octave(1, command.pos)

    def octave_down(self, command: cmd.OctaveDown):
        self.state.shift_octave(-1, command.pos)

    def octave_up_once(self, _command: cmd.OctaveUpOnce):
        self.state.shift_octave_once(1)

    def octave_down_once(self, _command: cmd.OctaveDownOnce):
        self.state.shift_octave_once(-1)

    def set_gate(self, command: cmd.SetGate):
        self.state.set_gate(command.value, command.pos)

    def set_velocity(self, command: cmd.SetVelocity):
        self.state.set_velocity(command.value, command.random, command.pos)

    def velocity_up(self, command: cmd.VelocityUp):
        delta = self.config.velocity_step if command.delta is None else command.delta
        self.state.shift_velocity(delta, command.pos)

    def velocity_down(self, command: cmd.VelocityDown):
        delta = self.config.velocity_step if command.delta is None else command.delta
        self.state.shift_velocity(-delta, command.pos)

    def set_timing(self, command: cmd.SetTiming):
        self.state.set_timing(command.value, command.random, command.pos)

    def set_pitch_bend(self, command: cmd.SetPitchBend):
        self.state.set_pitch_bend(command.value, command.pos)
        self.emitter.pitch_bend(self.active, self.cursor, command.value)

    def set_control_change(self, command: cmd.SetControlChange):
        state = self.state
        controller, value = command.controller, command.value
        state.set_control(controller, value, command.pos)

        if command.end is None:
            self.emitter.control_change(self.active, self.cursor, controller, value)
            return

        # y7,0,127,2: one event per value step, at most one per tick.
        end = check_range('control value', command.end, 0, MAX_CONTROL, command.pos)
        duration = state.duration(command.sweep, self.config.ticks_per_whole, command.pos)
        nstep = min(abs(end - value), int(duration))

        start = self.cursor
        if nstep == 0:
            self.emitter.control_change(self.active, start, controller, end)
        else:
            for i in range(nstep + 1):
                time = start + duration * i / nstep
                step_value = value + round(Fraction(end - value) * i / nstep)
                self.emitter.control_change(self.active, time, controller, step_value)
        state.set_control(controller, end, command.pos)

    def voice_select(self, command: cmd.VoiceSelect):
        pos = command.pos
        self.active = self._check_voice(command.channel, pos)
        for caption, value in [('bank LSB', command.bank_lsb), ('bank MSB', command.bank_msb)]:
            if value is not None and not 0 <= value <= MAX_CONTROL:
                raise VoiceReferenceError(
                    f'invalid {caption} {value} (must be 0..{MAX_CONTROL})', pos)

        state = self.state
        for controller, value in [
            (BANK_SELECT_MSB, command.bank_msb),
            (BANK_SELECT_LSB, command.bank_lsb),
        ]:
            if value is not None:
                state.set_control(controller, value, pos)
                self.emitter.control_change(self.active, self.cursor, controller, value)

    # **** Structure ****

    def loop_begin(self, command: cmd.LoopBegin) -> int:
        return self.loops.begin(self.pc, command)

    def loop_break(self, _command: cmd.LoopBreak) -> int:
        return self.loops.loop_break(self.pc)

    def loop_end(self, command: cmd.LoopEnd) -> int:
        return self.loops.end(self.pc, command)

    def play_from_here(self, _command: cmd.PlayFromHere):
        self.play_from = self.cursor

    def comment(self, command: cmd.Comment):
        if command.kind == cmd.CommentKind.DEBUG:
            log.info('%s (voice %d, tick %d)', command.text, self.active, to_tick(self.cursor))

    def definition(self, _command: Command):
        """ Definitions are consumed by macro expansion. """

    def unexpanded_ref(self, command: Command):
        raise TypeError(f'unexpanded macro reference {command}, programmer error')


HANDLERS: Dict[type, Callable[[Interpreter, Command], Optional[int]]] = {
    cmd.Note: Interpreter.play,
    cmd.Rest: Interpreter.play,
    cmd.Harmony: Interpreter.play,
    cmd.GroupNotes: Interpreter.play,
    cmd.TieSlur: Interpreter.tie,
    cmd.SetLength: Interpreter.set_length,
    cmd.SetOctave: Interpreter.set_octave,
    cmd.SetPitchBend: Interpreter.set_pitch_bend,
    cmd.SetGate: Interpreter.set_gate,
    cmd.SetVelocity: Interpreter.set_velocity,
    cmd.SetTiming: Interpreter.set_timing,
    cmd.SetControlChange: Interpreter.set_control_change,
    cmd.OctaveUp: Interpreter.octave_up,
    cmd.OctaveDown: Interpreter.octave_down,
    cmd.OctaveUpOnce: Interpreter.octave_up_once,
    cmd.OctaveDownOnce: Interpreter.octave_down_once,
    cmd.VelocityUp: Interpreter.velocity_up,
    cmd.VelocityDown: Interpreter.velocity_down,
    cmd.VoiceSelect: Interpreter.voice_select,
    cmd.MacroDefine: Interpreter.definition,
    cmd.RhythmMacroDefine: Interpreter.definition,
    cmd.MacroRef: Interpreter.unexpanded_ref,
    cmd.RhythmMacroRef: Interpreter.unexpanded_ref,
    cmd.LoopBegin: Interpreter.loop_begin,
    cmd.LoopBreak: Interpreter.loop_break,
    cmd.LoopEnd: Interpreter.loop_end,
    cmd.PlayFromHere: Interpreter.play_from_here,
    cmd.Comment: Interpreter.comment,
}

_missing = set(cmd.COMMAND_TYPES) - set(HANDLERS)
if _missing:
    raise TypeError(f'Interpreter does not handle {sorted(t.__name__ for t in _missing)}')


def compile_commands(commands: Iterable[Command],
                     config: Optional[CompilerConfig] = None) -> Performance:
    return Interpreter(config).run(commands)


def compile_mml(in_str: str, config: Optional[CompilerConfig] = None) -> Performance:
    return compile_commands(tokenize(in_str), config)
