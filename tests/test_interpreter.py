import logging

import pytest

from mmltools import commands as cmd
from mmltools.config import CompilerConfig, VoiceDefaults
from mmltools.errors import (
    EmptyGroupError, InvalidParameterError, MacroRecursionError, MMLSyntaxError,
    UnbalancedLoopError, UndefinedMacroError, VoiceReferenceError,
)
from mmltools.events import EventKind
from mmltools.interpreter import Interpreter, compile_commands, compile_mml
from mmltools.tokenizer import tokenize

QUARTER = 480

ON = EventKind.NOTE_ON
OFF = EventKind.NOTE_OFF


def notes(in_str, **kwargs):
    """ Returns (time, kind, key) of every note event. """
    performance = compile_mml(in_str, CompilerConfig(**kwargs))
    return [
        (e.time, e.kind.value, e.payload.key)
        for e in performance.events if e.kind in (ON, OFF)
    ]


def note_ons(in_str, **kwargs):
    performance = compile_mml(in_str, CompilerConfig(**kwargs))
    return [e for e in performance.events if e.kind == ON]


def keys(in_str, **kwargs):
    return [e.payload.key for e in note_ons(in_str, **kwargs)]


def velocities(in_str, **kwargs):
    return [e.payload.velocity for e in note_ons(in_str, **kwargs)]


def times(in_str, **kwargs):
    return [e.time for e in note_ons(in_str, **kwargs)]


# Sequencing


def test_single_note():
    assert notes('c') == [(0, 'note_on', 60), (QUARTER, 'note_off', 60)]


def test_sequence():
    assert notes('cde') == [
        (0, 'note_on', 60),
        (480, 'note_off', 60),
        (480, 'note_on', 62),
        (960, 'note_off', 62),
        (960, 'note_on', 64),
        (1440, 'note_off', 64),
    ]


def test_empty():
    assert compile_mml('').events == []
    assert compile_mml('/* nothing */ l8 o5').events == []


def test_lengths():
    assert times('c8 c8. c r c l16 c c') == [0, 240, 600, 1560, 2040, 2160]


def test_ticks_per_whole():
    assert notes('c', ticks_per_whole=96) == [(0, 'note_on', 60), (24, 'note_off', 60)]


def test_triplet_rounding():
    # Times accumulate exactly, and are only rounded when emitted.
    assert times('c3 c3 c3 c', ticks_per_whole=100) == [0, 33, 67, 100]


def test_octaves():
    assert keys('o4 c > c < < c o9 c') == [60, 72, 48, 120]


def test_key_number():
    assert notes('n69,8') == [(0, 'note_on', 69), (240, 'note_off', 69)]


def test_gate():
    assert notes('q50 c') == [(0, 'note_on', 60), (240, 'note_off', 60)]
    assert notes('c,,25') == [(0, 'note_on', 60), (120, 'note_off', 60)]


def test_timing():
    assert notes('t10 c') == [(10, 'note_on', 60), (490, 'note_off', 60)]
    assert notes('t-10 c') == [(0, 'note_on', 60), (470, 'note_off', 60)]
    assert notes('c,,,5 d') == [
        (5, 'note_on', 60), (480, 'note_on', 62), (485, 'note_off', 60), (960, 'note_off', 62)
    ]


def test_early_note_ends_previous_same_key():
    assert notes('c c,,,-10') == [
        (0, 'note_on', 60), (470, 'note_off', 60), (470, 'note_on', 60), (950, 'note_off', 60)
    ]
    assert notes('c16 c,,,-200') == [
        (0, 'note_on', 60), (0, 'note_off', 60), (0, 'note_on', 60), (400, 'note_off', 60)
    ]


# Velocity


def test_velocity_override():
    assert velocities('v100 c,50 c') == [50, 100]


def test_velocity_step():
    assert velocities('v100 ) c ( ( c )4 c') == [108, 92, 96]
    assert velocities('v100 ) c', velocity_step=2) == [102]


def test_velocity_step_out_of_range():
    with pytest.raises(InvalidParameterError):
        compile_mml('v127 )')


def test_velocity_random_deterministic():
    in_str = 'v100,20 t5,3 [4 cdefgab]'
    first = compile_mml(in_str).events
    assert compile_mml(in_str).events == first

    vels = {e.payload.velocity for e in first if e.kind == ON}
    assert len(vels) > 1
    assert all(80 <= v <= 120 for v in vels)

    other = compile_mml(in_str, CompilerConfig(seed=1)).events
    assert other != first


# Octave-once


def test_octave_once():
    assert keys('`c c') == [72, 60]
    assert keys('"c c') == [48, 60]


def test_octave_once_skips_rests():
    assert keys('`r c') == [72]


def test_octave_once_discarded():
    assert keys('`<c c') == [48, 48]
    assert keys('`"c') == [48]


def test_octave_once_harmony():
    assert keys("`'ce' c") == [72, 76, 60]


def test_octave_once_group():
    assert keys('`{cc}') == [72, 60]


def test_octave_once_discarded_in_harmony():
    assert keys("`'>c'") == keys('`>c') == [72]
    assert keys("`'<c'") == [48]
    assert keys("'c`e'") == [60, 76]


def test_octave_once_harmony_nested_group():
    assert sorted(keys("`'{ce}g'")) == [72, 76, 79]
    assert keys("`'{cc}'") == [72, 72]


# Harmony


def test_harmony():
    assert notes("'ceg' d") == [
        (0, 'note_on', 60),
        (0, 'note_on', 64),
        (0, 'note_on', 67),
        (480, 'note_off', 60),
        (480, 'note_off', 64),
        (480, 'note_off', 67),
        (480, 'note_on', 62),
        (960, 'note_off', 62),
    ]


def test_harmony_length_and_gate():
    assert notes("'ce'2,50") == [
        (0, 'note_on', 60), (0, 'note_on', 64), (480, 'note_off', 60), (480, 'note_off', 64)
    ]


def test_harmony_octave_persists():
    assert keys("'c>e' c") == [60, 76, 72]


def test_harmony_nested_group():
    events = notes("'c{eg}'")
    assert sorted(events) == sorted([
        (0, 'note_on', 60), (480, 'note_off', 60),
        (0, 'note_on', 64), (240, 'note_off', 64),
        (240, 'note_on', 67), (480, 'note_off', 67),
    ])


# Groups


def test_group():
    assert notes('{ceg} d') == [
        (0, 'note_on', 60),
        (160, 'note_off', 60),
        (160, 'note_on', 64),
        (320, 'note_off', 64),
        (320, 'note_on', 67),
        (480, 'note_off', 67),
        (480, 'note_on', 62),
        (960, 'note_off', 62),
    ]


def test_group_length():
    assert times('{cd}2 e') == [0, 480, 960]


def test_group_divisor():
    assert times('{ce}4,4 d') == [0, 120, 240]


def test_group_rest():
    assert notes('{c r e}') == [
        (0, 'note_on', 60), (160, 'note_off', 60), (320, 'note_on', 64), (480, 'note_off', 64)
    ]


def test_group_tie():
    assert notes('{c&c d}') == [
        (0, 'note_on', 60), (320, 'note_off', 60), (320, 'note_on', 62), (480, 'note_off', 62)
    ]


def test_nested_group():
    assert times('{c {de}}') == [0, 240, 360]


def test_group_harmony():
    assert notes("{'ce' g}") == [
        (0, 'note_on', 60),
        (0, 'note_on', 64),
        (240, 'note_off', 60),
        (240, 'note_off', 64),
        (240, 'note_on', 67),
        (480, 'note_off', 67),
    ]


@pytest.mark.parametrize('in_str', ['{&c}', '{r&c}', '{c&&c}'])
def test_group_bad_tie(in_str):
    with pytest.raises(InvalidParameterError):
        compile_mml(in_str)


def test_group_invalid_divisor():
    with pytest.raises(InvalidParameterError):
        compile_mml('{cd},0')


@pytest.mark.parametrize('command', [
    cmd.Harmony(members=()),
    cmd.GroupNotes(members=()),
    cmd.Harmony(members=(cmd.OctaveUp(),)),
    cmd.GroupNotes(members=(cmd.OctaveDown(), cmd.OctaveUpOnce())),
])
def test_empty_group_commands(command):
    with pytest.raises(EmptyGroupError):
        compile_commands([command])


# Ties and slurs


def test_tie():
    assert notes('c&c') == [(0, 'note_on', 60), (960, 'note_off', 60)]
    assert notes('c&c&c8') == [(0, 'note_on', 60), (1200, 'note_off', 60)]


def test_tie_gate_applies_to_last_part():
    assert notes('q50 c&c') == [(0, 'note_on', 60), (720, 'note_off', 60)]


def test_slur():
    assert notes('q50 c&d') == [
        (0, 'note_on', 60), (480, 'note_off', 60), (480, 'note_on', 62), (720, 'note_off', 62)
    ]


def test_tie_into_harmony():
    assert notes("c&'ce'") == [
        (0, 'note_on', 60), (480, 'note_on', 64), (960, 'note_off', 60), (960, 'note_off', 64)
    ]


def test_harmony_repeated_key():
    assert notes("'cc'") == [(0, 'note_on', 60), (480, 'note_off', 60)]
    assert notes("c&'cc'") == [(0, 'note_on', 60), (960, 'note_off', 60)]
    assert notes("'c{cc}'") == [(0, 'note_on', 60), (480, 'note_off', 60)]


def test_tie_then_rest():
    assert notes('c& r d') == [
        (0, 'note_on', 60), (480, 'note_off', 60), (960, 'note_on', 62), (1440, 'note_off', 62)
    ]


@pytest.mark.parametrize('in_str', ['&c', 'r&c', 'c r & d'])
def test_tie_without_note(in_str):
    with pytest.raises(InvalidParameterError):
        compile_mml(in_str)


# Loops and macros


def test_loop():
    assert keys('[2 c d : e ]') == [60, 62, 64, 60, 62]
    assert times('[2 c d : e ]') == [0, 480, 960, 1440, 1920]


def test_loop_count_config():
    assert keys('[c]', loop_count=3) == [60, 60, 60]


def test_loop_state_carries_over():
    assert keys('[3 c >]') == [60, 72, 84]


def test_skipped_loop_still_defines_macros():
    assert keys('[0\n#A c\n]\n#A') == [60]



def test_macro():
    assert compile_mml('#A cde\n#A').events == compile_mml('cde').events


def test_macro_in_loop():
    assert keys('#A c\n[3 #A]') == [60, 60, 60]


def test_rhythm_macro():
    assert times('$a{c8 d8}\n$a $a') == [0, 240, 480, 720]


def test_macro_errors():
    with pytest.raises(UndefinedMacroError):
        compile_mml('c #B')
    with pytest.raises(MacroRecursionError):
        compile_mml('#A #A\n#A')
    with pytest.raises(MacroRecursionError):
        compile_mml('#A #B\n#B #C\n#C c\n#A', CompilerConfig(max_macro_depth=2))


def test_unbalanced_loop():
    with pytest.raises(UnbalancedLoopError):
        compile_mml('c [ d')
    with pytest.raises(UnbalancedLoopError):
        compile_mml('c ] d')


# Voices


def test_voices():
    assert [(e.time, e.voice, e.kind) for e in compile_mml('c @2 d').events] == [
        (0, 1, ON), (0, 2, ON), (480, 1, OFF), (480, 2, OFF),
    ]


def test_voice_cursors_independent():
    events = compile_mml('c c @2 d @1 e').events
    assert [(e.time, e.voice, e.payload.key) for e in events if e.kind == ON] == [
        (0, 1, 60), (0, 2, 62), (480, 1, 60), (960, 1, 64),
    ]


def test_voice_state_independent():
    assert keys('o5 c @2 c @1 c') == [72, 60, 72]


def test_voice_defaults_config():
    config = dict(voices={2: VoiceDefaults(octave=3, velocity=70)})
    assert keys('c @2 c', **config) == [60, 48]
    assert velocities('c @2 c', **config) == [100, 70]


def test_default_voice_config():
    assert {e.voice for e in compile_mml('c', CompilerConfig(default_voice=4)).events} == {4}


def test_bank_select():
    events = compile_mml('@2,1,3 c').events
    controls = [
        (e.voice, e.payload.controller, e.payload.value)
        for e in events if e.kind == EventKind.CONTROL_CHANGE
    ]
    assert controls == [(2, 0, 3), (2, 32, 1)]


@pytest.mark.parametrize('in_str', ['@0', '@17', '@-1', '@1,128', '@1,0,-1'])
def test_voice_select_errors(in_str):
    with pytest.raises(VoiceReferenceError):
        compile_mml(in_str)


def test_voice_count_config():
    compile_mml('@20 c', CompilerConfig(voice_count=32))
    with pytest.raises(VoiceReferenceError):
        compile_mml('@20 c')


# Controllers


def test_pitch_bend():
    events = compile_mml('p100 c p-8192').events
    assert [(e.time, e.kind) for e in events] == [
        (0, EventKind.PITCH_BEND), (0, ON), (480, EventKind.PITCH_BEND), (480, OFF),
    ]
    assert events[0].payload.value == 100
    assert events[2].payload.value == -8192


def test_pitch_bend_range():
    with pytest.raises(InvalidParameterError):
        compile_mml('p8192')


def test_control_change():
    events = compile_mml('c y7,100').events
    [event] = [e for e in events if e.kind == EventKind.CONTROL_CHANGE]
    assert event.to_dict() == dict(
        time=480, voice=1, kind='control_change', controller=7, value=100)


def test_control_change_sweep():
    events = compile_mml('y7,0,4,1 c').events
    sweep = [(e.time, e.payload.value) for e in events if e.kind == EventKind.CONTROL_CHANGE]
    assert sweep == [(0, 0), (480, 1), (960, 2), (1440, 3), (1920, 4)]

    # Sweeps do not move the cursor.
    assert times('y7,0,4,1 c') == [0]


def test_control_change_sweep_down():
    events = compile_mml('y10,2,0,2').events
    assert [(e.time, e.payload.value) for e in events] == [(0, 2), (480, 1), (960, 0)]


def test_control_change_range():
    with pytest.raises(InvalidParameterError):
        compile_mml('y7,128')
    with pytest.raises(InvalidParameterError):
        compile_mml('y128,0')


# Play from here


def test_play_from_here():
    performance = compile_mml('p10 c ? d')
    assert performance.play_from == 480
    assert [e.to_dict() for e in performance.from_here()] == [
        dict(time=0, voice=1, kind='pitch_bend', value=10),
        dict(time=0, voice=1, kind='note_on', key=62, velocity=100),
        dict(time=480, voice=1, kind='note_off', key=62),
    ]
    # The full performance is kept.
    assert len(performance.events) == 5


def test_play_from_here_last_marker():
    assert compile_mml('? c ? d').play_from == 480
    assert compile_mml('c').play_from is None


def test_play_from_here_across_voices():
    performance = compile_mml('c c ? @2 d')
    assert performance.play_from == 960
    assert performance.from_here() == []


# Diagnostics


def test_debug_comment(caplog):
    caplog.set_level(logging.INFO)
    compile_mml('c //! chorus starts\nd')
    assert 'chorus starts (voice 1, tick 480)' in caplog.text


def test_error_position():
    with pytest.raises(InvalidParameterError) as e:
        compile_mml('c\no9 b')
    assert e.value.pos == (2, 4)


def test_error_position_from_command():
    with pytest.raises(UnbalancedLoopError) as e:
        compile_mml('c\n  ]')
    assert e.value.pos == (2, 3)


@pytest.mark.parametrize('in_str, error', [
    ('c x', MMLSyntaxError),
    ("c ''", EmptyGroupError),
    ('o10', InvalidParameterError),
    ('l0 c', InvalidParameterError),
    ('q101', InvalidParameterError),
    ('v128', InvalidParameterError),
    ('n128', InvalidParameterError),
    ('c,200', InvalidParameterError),
])
def test_errors(in_str, error):
    with pytest.raises(error):
        compile_mml(in_str)


# Determinism


def test_interpreters_independent():
    commands = tokenize('v90 o5 [2 c d] @2 e')
    first = Interpreter().run(commands)
    second = Interpreter().run(commands)
    assert first == second
    assert keys('c') == [60]
