""" Tokenizer: turns MML text into a flat list of Commands.

    c d e f g a b   notes, with +/# (sharp) -, length, dots and ,velocity,gate,timing
    n60             MIDI key number, with ,length,velocity,gate,timing
    r l o p q v t y > < ` " ( ) @ [ : ] & ?
    'ceg'           harmony          {cde}     group
    #NAME body      macro definition (at line start), #NAME elsewhere is a reference
    $X{body}        rhythm macro definition, $X is a reference
    /* */ // //!    comments (//! is logged while compiling)
"""

import bisect
import re
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Pattern, Union

import pygtrie

from mmltools import commands as cmd
from mmltools.commands import NOTE_SEMITONES, Command, CommentKind, Length
from mmltools.errors import EmptyGroupError, InvalidParameterError, MMLSyntaxError, Pos
from mmltools.utils.substring_trie import longest_prefix

WHITESPACE = ' \t\n\r\x0b\f|'


def any_of(chars) -> Pattern:
    """ Compile chars into wildcard regex pattern.
    Match is 0 characters long and does not include char. """
    chars = ''.join(sorted(chars))
    regex = '(?=[{}])'.format(re.escape(chars))
    return re.compile(regex)


def none_of(chars) -> Pattern:
    """ Compile chars into negative-wildcard regex pattern.
    Match is 0 characters long and does not include non-matched char. """
    chars = ''.join(sorted(chars))
    regex = '(?=[^{}])'.format(re.escape(chars))
    return re.compile(regex)


MACRO_NAME = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')


class Stream:
    """ Cursor over the source text. `end` bounds reads (see `Tokenizer.end_at`). """

    def __init__(self, in_str: str):
        self.in_str = in_str
        self.pos = 0
        self.end = len(in_str)
        self._line_starts = [0] + [m.end() for m in re.finditer('\n', in_str)]

    def is_eof(self):
        assert self.pos <= self.end
        return self.pos >= self.end

    def peek(self) -> str:
        """ Returns '' at end of input. """
        if self.is_eof():
            return ''
        return self.in_str[self.pos]

    def get_char(self) -> str:
        out = self.peek()
        self.pos += len(out)
        return out

    def skip_chars(self, num: int):
        self.pos = min(self.pos + num, self.end)

    def get_until(self, regex: Union[Pattern, str], strict: bool) -> str:
        """
        Read until first regex match. Move pos after end of match.

        :param regex: Regex pattern terminating region.
        :param strict: If true, raises on failure. If false, returns in_str[pos:end].
        :return: Text until regex match (not inclusive).
        """
        regex = re.compile(regex)
        match = regex.search(self.in_str, self.pos, self.end)

        if match:
            end = match.end()
            out_idx = match.start()
        elif not strict:
            end = out_idx = self.end
        else:
            raise MMLSyntaxError(
                'Unterminated region, missing "{}"'.format(regex.pattern), self.line_col())

        out = self.in_str[self.pos:out_idx]
        self.pos = end
        return out

    def get_line(self) -> str:
        """ Rest of the current line, without the newline. """
        return self.get_until(any_of('\n'), strict=False)

    def skip_spaces(self):
        self.get_until(none_of(WHITESPACE), strict=False)

    def get_int(self, maybe=False, signed=False) -> Optional[int]:
        begin = self.pos
        sign = ''
        if signed and self.peek() in ('-', '+'):
            sign = self.get_char()

        buffer = ''
        while self.peek().isdigit():
            buffer += self.get_char()

        if not buffer:
            self.pos = begin
            if maybe:
                return None
            raise MMLSyntaxError('Integer expected, but no digits to parse', self.line_col())
        return int(sign + buffer)

    def at_line_start(self, pos: int) -> bool:
        line_begin = self.in_str.rfind('\n', 0, pos) + 1
        return not self.in_str[line_begin:pos].strip()

    def line_col(self, pos: Optional[int] = None) -> Pos:
        if pos is None:
            pos = self.pos
        line_idx = bisect.bisect_right(self._line_starts, pos) - 1
        return line_idx + 1, pos - self._line_starts[line_idx] + 1


ACCIDENTALS = {'+': 1, '#': 1, '-': -1}


class Tokenizer:
    def __init__(self, in_str: str):
        self.stream = Stream(in_str)

    def parse(self) -> List[Command]:
        return self.parse_commands()

    @contextmanager
    def end_at(self, end: int):
        """ Temporarily truncates the stream at `end`. """
        old_end = self.stream.end
        self.stream.end = min(end, old_end)
        try:
            yield
        finally:
            self.stream.end = old_end

    # **** Command loop ****

    def parse_commands(self, close: Optional[str] = None, open_pos: Optional[Pos] = None) \
            -> List[Command]:
        """ Parses commands until end of input, or until (and including) `close`. """
        stream = self.stream
        out = []

        while True:
            stream.skip_spaces()
            if stream.is_eof():
                if close is not None:
                    raise MMLSyntaxError(f'Unterminated region, missing "{close}"', open_pos)
                return out

            if close is not None and stream.peek() == close:
                stream.skip_chars(1)
                return out

            command = self.parse_command()
            if command is not None:
                out.append(command)

    def parse_command(self) -> Optional[Command]:
        stream = self.stream
        pos = stream.line_col()

        match = longest_prefix(COMMANDS, stream.in_str, stream.pos, stream.end)
        if match is None:
            raise MMLSyntaxError(f'Invalid command {stream.peek()!r}', pos)

        key, handler = match
        stream.skip_chars(len(key))
        return handler(self, key, pos)

    # **** Shared argument parsing ****

    def get_length(self, maybe=False) -> Optional[Length]:
        denominator = self.stream.get_int(maybe=maybe)
        if denominator is None:
            return None

        dots = 0
        while self.stream.peek() == '.':
            self.stream.skip_chars(1)
            dots += 1
        return Length(denominator, dots)

    def get_params(self, nslot: int, pos: Pos, signed=True) -> List[Optional[int]]:
        """ Reads trailing `,number` pairs (number optional).
        Always returns `nslot` values, padded with None. """
        params: List[Optional[int]] = []
        while self.stream.peek() == ',':
            self.stream.skip_chars(1)
            params.append(self.stream.get_int(maybe=True, signed=signed))

        if len(params) > nslot:
            raise InvalidParameterError(
                f'too many parameters ({len(params)}), expected at most {nslot}', pos)
        return params + [None] * (nslot - len(params))

    def _require_param(self, what: str, pos: Pos, signed=False) -> int:
        self._require_param_sep(what, pos)
        return self.stream.get_int(signed=signed)

    # **** Notes ****

    def parse_note(self, letter: str, pos: Pos) -> cmd.Note:
        letter = letter.lower()
        accidental = 0
        while self.stream.peek() in ACCIDENTALS:
            accidental += ACCIDENTALS[self.stream.get_char()]

        length = self.get_length(maybe=True)
        # No `scale` slot; a fourth value is an error.
        velocity, gate, timing = self.get_params(3, pos)
        return cmd.Note(pos, letter=letter, accidental=accidental, length=length,
                        velocity=velocity, gate=gate, timing=timing)

    def parse_key_note(self, _key: str, pos: Pos) -> cmd.Note:
        key = self.stream.get_int()
        length = None
        if self.stream.peek() == ',':
            self.stream.skip_chars(1)
            length = self.get_length(maybe=True)

        velocity, gate, timing = self.get_params(3, pos)
        return cmd.Note(pos, key=key, length=length,
                        velocity=velocity, gate=gate, timing=timing)

    def parse_rest(self, _key: str, pos: Pos) -> cmd.Rest:
        return cmd.Rest(pos, length=self.get_length(maybe=True))

    def parse_harmony(self, _key: str, pos: Pos) -> cmd.Harmony:
        members = self._parse_members("'", pos, HARMONY_TYPES, 'harmony')
        for member in members:
            if isinstance(member, cmd.Note) and \
                    (member.velocity, member.gate, member.timing) != (None, None, None):
                raise MMLSyntaxError('notes inside harmony cannot have parameters', member.pos)

        length = self.get_length(maybe=True)
        gate, = self.get_params(1, pos)
        return cmd.Harmony(pos, members=tuple(members), length=length, gate=gate)

    def parse_group(self, _key: str, pos: Pos) -> cmd.GroupNotes:
        members = self._parse_members('}', pos, GROUP_TYPES, 'group')
        length = self.get_length(maybe=True)
        divisor, = self.get_params(1, pos, signed=False)
        return cmd.GroupNotes(pos, members=tuple(members), length=length, divisor=divisor)

    def _parse_members(self, close: str, pos: Pos, allowed: tuple, name: str) -> List[Command]:
        members = [
            command for command in self.parse_commands(close, pos)
            if not isinstance(command, cmd.Comment)
        ]
        for member in members:
            if not isinstance(member, allowed):
                raise MMLSyntaxError(
                    f'{type(member).__name__} is not allowed inside {name}', member.pos)
            if getattr(member, 'length', None) is not None:
                raise MMLSyntaxError(f'lengths are not allowed inside {name}', member.pos)
        if not any(isinstance(member, cmd.SOUNDING_TYPES) for member in members):
            raise EmptyGroupError(f'empty {name}', pos)
        return members

    # **** Voice parameters ****

    def parse_set_length(self, _key: str, pos: Pos) -> cmd.SetLength:
        return cmd.SetLength(pos, length=self.get_length())

    def parse_set_octave(self, _key: str, pos: Pos) -> cmd.SetOctave:
        return cmd.SetOctave(pos, value=self.stream.get_int())

    def parse_pitch_bend(self, _key: str, pos: Pos) -> cmd.SetPitchBend:
        return cmd.SetPitchBend(pos, value=self.stream.get_int(signed=True))

    def parse_gate(self, _key: str, pos: Pos) -> cmd.SetGate:
        return cmd.SetGate(pos, value=self.stream.get_int())

    def parse_velocity(self, _key: str, pos: Pos) -> cmd.SetVelocity:
        value = self.stream.get_int()
        random, = self.get_params(1, pos, signed=False)
        return cmd.SetVelocity(pos, value=value, random=random)

    def parse_timing(self, _key: str, pos: Pos) -> cmd.SetTiming:
        value = self.stream.get_int(signed=True)
        random, = self.get_params(1, pos, signed=False)
        return cmd.SetTiming(pos, value=value, random=random)

    def parse_control_change(self, _key: str, pos: Pos) -> cmd.SetControlChange:
        controller = self.stream.get_int()
        value = self._require_param('control change value', pos)

        end = sweep = None
        if self.stream.peek() == ',':
            end = self._require_param('control change sweep end', pos)
            self._require_param_sep('control change sweep length', pos)
            sweep = self.get_length()
        if self.stream.peek() == ',':
            raise InvalidParameterError('too many parameters, expected at most 4', pos)

        return cmd.SetControlChange(pos, controller=controller, value=value, end=end, sweep=sweep)

    def _require_param_sep(self, what: str, pos: Pos):
        if self.stream.peek() != ',':
            raise MMLSyntaxError(f'missing {what}', pos)
        self.stream.skip_chars(1)

    def parse_velocity_step(self, key: str, pos: Pos) -> Command:
        delta = self.stream.get_int(maybe=True)
        if key == ')':
            return cmd.VelocityUp(pos, delta=delta)
        return cmd.VelocityDown(pos, delta=delta)

    def parse_voice_select(self, _key: str, pos: Pos) -> cmd.VoiceSelect:
        channel = self.stream.get_int(signed=True)
        bank_lsb, bank_msb = self.get_params(2, pos)
        return cmd.VoiceSelect(pos, channel=channel, bank_lsb=bank_lsb, bank_msb=bank_msb)

    def parse_loop_begin(self, _key: str, pos: Pos) -> cmd.LoopBegin:
        return cmd.LoopBegin(pos, count=self.stream.get_int(maybe=True))

    # **** Macros ****

    def parse_macro(self, _key: str, pos: Pos) -> Command:
        stream = self.stream
        hash_pos = stream.pos - 1

        name = stream.get_until(none_of(MACRO_NAME_CHARS), strict=False)
        if not MACRO_NAME.fullmatch(name):
            raise MMLSyntaxError(f'invalid macro name {name!r}', pos)

        if stream.at_line_start(hash_pos):
            line_end = stream.in_str.find('\n', stream.pos, stream.end)
            if line_end == -1:
                line_end = stream.end
            rest = stream.in_str[stream.pos:line_end].strip()
            if rest and not rest.startswith('/'):
                with self.end_at(line_end):
                    body = self.parse_commands()
                return cmd.MacroDefine(pos, name=name, body=tuple(body))

        return cmd.MacroRef(pos, name=name)

    def parse_rhythm_macro(self, _key: str, pos: Pos) -> Command:
        stream = self.stream
        rhythm_id = stream.get_char()
        if not rhythm_id.isalnum():
            raise MMLSyntaxError(f'invalid rhythm macro id {rhythm_id!r}', pos)

        if stream.peek() == '{':
            stream.skip_chars(1)
            body = self.parse_commands('}', pos)
            return cmd.RhythmMacroDefine(pos, id=rhythm_id, body=tuple(body))
        return cmd.RhythmMacroRef(pos, id=rhythm_id)

    # **** Comments ****

    def parse_range_comment(self, _key: str, pos: Pos) -> cmd.Comment:
        text = self.stream.get_until(re.escape('*/'), strict=True)
        return cmd.Comment(pos, kind=CommentKind.RANGE, text=text.strip())

    def parse_line_comment(self, key: str, pos: Pos) -> cmd.Comment:
        kind = CommentKind.DEBUG if key == '//!' else CommentKind.LINE
        return cmd.Comment(pos, kind=kind, text=self.stream.get_line().strip())


MACRO_NAME_CHARS = 'abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_'

_OCTAVE_TYPES = (cmd.OctaveUp, cmd.OctaveDown, cmd.OctaveUpOnce, cmd.OctaveDownOnce)
HARMONY_TYPES = (cmd.Note, cmd.GroupNotes) + _OCTAVE_TYPES
GROUP_TYPES = cmd.SOUNDING_TYPES + (cmd.TieSlur,) + _OCTAVE_TYPES


def _simple(command_type) -> Callable:
    return lambda self, _key, pos: command_type(pos)


def _case_insensitive(mapping: Dict[str, Callable]) -> Dict[str, Callable]:
    out = {}
    for key, handler in mapping.items():
        out[key.lower()] = handler
        out[key.upper()] = handler
    return out


COMMANDS = pygtrie.CharTrie()
COMMANDS.update(_case_insensitive({
    letter: (lambda self, key, pos: self.parse_note(key, pos)) for letter in NOTE_SEMITONES
}))
COMMANDS.update(_case_insensitive({
    'n': Tokenizer.parse_key_note,
    'r': Tokenizer.parse_rest,
    'l': Tokenizer.parse_set_length,
    'o': Tokenizer.parse_set_octave,
    'p': Tokenizer.parse_pitch_bend,
    'q': Tokenizer.parse_gate,
    'v': Tokenizer.parse_velocity,
    't': Tokenizer.parse_timing,
    'y': Tokenizer.parse_control_change,
}))
COMMANDS.update({
    "'": Tokenizer.parse_harmony,
    '{': Tokenizer.parse_group,
    '>': _simple(cmd.OctaveUp),
    '<': _simple(cmd.OctaveDown),
    '`': _simple(cmd.OctaveUpOnce),
    '"': _simple(cmd.OctaveDownOnce),
    ')': Tokenizer.parse_velocity_step,
    '(': Tokenizer.parse_velocity_step,
    '@': Tokenizer.parse_voice_select,
    '[': Tokenizer.parse_loop_begin,
    ':': _simple(cmd.LoopBreak),
    ']': _simple(cmd.LoopEnd),
    '&': _simple(cmd.TieSlur),
    '?': _simple(cmd.PlayFromHere),
    '#': Tokenizer.parse_macro,
    '$': Tokenizer.parse_rhythm_macro,
    '/*': Tokenizer.parse_range_comment,
    '//': Tokenizer.parse_line_comment,
    '//!': Tokenizer.parse_line_comment,
})


def tokenize(in_str: str) -> List[Command]:
    return Tokenizer(in_str).parse()
