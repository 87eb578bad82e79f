""" Macro table and expander.

Named macros (`#NAME body`) and rhythm macros (`$X{body}`) live in separate
namespaces. Expansion is a single pass over the command stream: definitions
are recorded (and dropped) as they are reached, and each reference is
replaced by the latest definition preceding it. Bodies are expanded with an
explicit stack of open macros, so a macro that reaches itself again is
reported instead of being unrolled forever.
"""

from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from mmltools.commands import Command, MacroDefine, MacroRef, RhythmMacroDefine, RhythmMacroRef
from mmltools.errors import MacroRecursionError, UndefinedMacroError

DEFAULT_MAX_DEPTH = 64

# ('#', 'NAME') or ('$', 'X')
MacroKey = Tuple[str, str]


def format_key(key: MacroKey) -> str:
    return ''.join(key)


class MacroTable:
    def __init__(self):
        self.entries: Dict[MacroKey, Tuple[Command, ...]] = {}

    def define(self, name: str, body: Iterable[Command]):
        """ Redefinition overwrites silently. """
        self.entries['#', name] = tuple(body)

    def define_rhythm(self, rhythm_id: str, body: Iterable[Command]):
        self.entries['$', rhythm_id] = tuple(body)

    def __contains__(self, key: MacroKey):
        return key in self.entries

    def lookup(self, ref: Command) -> Tuple[MacroKey, Tuple[Command, ...]]:
        key = ref_key(ref)
        try:
            return key, self.entries[key]
        except KeyError:
            raise UndefinedMacroError(format_key(key), ref.pos) from None


def ref_key(ref: Command) -> MacroKey:
    if isinstance(ref, MacroRef):
        return '#', ref.name
    if isinstance(ref, RhythmMacroRef):
        return '$', ref.id
    raise TypeError(f'invalid macro reference type={type(ref)}, programmer error')


def expand(
        commands: Iterable[Command],
        table: Optional[MacroTable] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
) -> List[Command]:
    """ Returns a new command stream with every macro reference replaced by its body.

    :param table: Table to record definitions into. Defaults to a new, empty table.
    :param max_depth: Maximum number of macros open at once.
    """
    if table is None:
        table = MacroTable()

    out: List[Command] = []

    # Bottom frame is the input stream itself (key None).
    stack: List[Tuple[Optional[MacroKey], Iterator[Command]]] = [(None, iter(commands))]

    while stack:
        _key, it = stack[-1]
        command = next(it, None)
        if command is None:
            stack.pop()
            continue

        if isinstance(command, MacroDefine):
            table.define(command.name, command.body)

        elif isinstance(command, RhythmMacroDefine):
            table.define_rhythm(command.id, command.body)

        elif isinstance(command, (MacroRef, RhythmMacroRef)):
            key, body = table.lookup(command)
            name = format_key(key)

            open_keys = [frame_key for frame_key, _ in stack]
            if key in open_keys:
                chain = ' -> '.join(format_key(k) for k in open_keys[1:] + [key])
                raise MacroRecursionError(
                    name, f'macro {name} references itself ({chain})', command.pos)

            if len(stack) > max_depth:
                raise MacroRecursionError(
                    name, f'macro {name} exceeds maximum expansion depth {max_depth}',
                    command.pos)

            stack.append((key, iter(body)))

        else:
            out.append(command)

    return out
