import pytest

from mmltools.errors import MacroRecursionError, UndefinedMacroError
from mmltools.macros import MacroTable, expand
from mmltools.tokenizer import tokenize


def expand_str(in_str, **kwargs):
    return expand(tokenize(in_str), **kwargs)


def test_expand():
    assert expand_str('#A cde\n#A') == tokenize('cde')
    assert expand_str('#A cde\nr #A r #A') == tokenize('r cde r cde')


def test_nested():
    assert expand_str('#A c #B\n#B de\n#A') == tokenize('cde')


def test_latest_definition_wins():
    assert expand_str('#A c\n#A\n#A d\n#A') == tokenize('c d')


def test_rhythm_macro():
    assert expand_str('$a{c8 d8} $a $a') == tokenize('c8 d8 c8 d8')


def test_separate_namespaces():
    assert expand_str('#a c\n$a{d}\nr #a $a') == tokenize('r c d')


def test_table_records_definitions():
    table = MacroTable()
    expand_str('#A c\n$x{d}', table=table)
    assert ('#', 'A') in table
    assert ('$', 'x') in table
    assert ('#', 'x') not in table


@pytest.mark.parametrize('in_str', ['#B', 'c #B', '#B\n#B c'])
def test_undefined(in_str):
    with pytest.raises(UndefinedMacroError) as e:
        expand_str(in_str)
    assert e.value.name == '#B'


def test_self_reference():
    with pytest.raises(MacroRecursionError) as e:
        expand_str('#A #A\n#A')
    assert e.value.name == '#A'


def test_mutual_recursion():
    with pytest.raises(MacroRecursionError) as e:
        expand_str('#A c #B\n#B d #A\n#A')
    assert '#A -> #B -> #A' in str(e.value)


def test_rhythm_recursion():
    with pytest.raises(MacroRecursionError):
        expand_str('$a{c $a} $a')


def test_max_depth():
    in_str = '#A #B\n#B #C\n#C c\n#A'
    assert expand_str(in_str, max_depth=3) == tokenize('c')
    with pytest.raises(MacroRecursionError):
        expand_str(in_str, max_depth=2)


def test_repeated_reference_is_not_recursion():
    assert expand_str('#A c\n#B #A #A\n#B') == tokenize('c c')
