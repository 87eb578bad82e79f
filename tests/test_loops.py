import pytest

from mmltools.commands import LoopBegin, LoopBreak, LoopEnd
from mmltools.errors import InvalidParameterError, UnbalancedLoopError
from mmltools.loops import LoopStack, match_loops
from mmltools.tokenizer import tokenize


def walk(in_str: str, default_count=2) -> str:
    """ Plays the loops in `in_str`, returning the note letters in play order. """
    commands = tokenize(in_str)
    loops = LoopStack(commands, default_count)

    out = []
    pc = 0
    while pc < len(commands):
        command = commands[pc]
        if isinstance(command, LoopBegin):
            pc = loops.begin(pc, command)
        elif isinstance(command, LoopBreak):
            pc = loops.loop_break(pc)
        elif isinstance(command, LoopEnd):
            pc = loops.end(pc, command)
        else:
            out.append(command.letter)
            pc += 1

    assert loops.depth == 0
    return ''.join(out)


@pytest.mark.parametrize('in_str, expected', [
    ('c', 'c'),
    ('[c]', 'cc'),
    ('[3 c]', 'ccc'),
    ('[1 c d]', 'cd'),
    ('[0 c] d', 'd'),
    ('[2 c d : e ]', 'cdecd'),
    ('[3 c : d]', 'cdcdc'),
    ('[1 c : d]', 'c'),
    ('[2 [3 c] d]', 'cccdcccd'),
    ('[2 a [2 b : c] : d]', 'abcbdabcb'),
    ('[0 [c] d] e', 'e'),
])
def test_play_order(in_str, expected):
    assert walk(in_str) == expected


def test_default_count():
    assert walk('[c]', default_count=3) == 'ccc'


def test_match_loops():
    commands = tokenize('[c [d] e]')
    assert match_loops(commands) == {0: 6, 2: 4}


@pytest.mark.parametrize('in_str', [']', 'c ]', ':', '[c', '[c [d]', 'c : [d]'])
def test_unbalanced(in_str):
    with pytest.raises(UnbalancedLoopError):
        match_loops(tokenize(in_str))


def test_unclosed_position():
    with pytest.raises(UnbalancedLoopError) as e:
        match_loops(tokenize('c\n[d'))
    assert e.value.pos == (2, 1)


def test_negative_count():
    commands = [LoopBegin(count=-1), LoopEnd()]
    loops = LoopStack(commands)
    with pytest.raises(InvalidParameterError):
        loops.begin(0, commands[0])
