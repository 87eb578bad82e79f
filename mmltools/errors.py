from typing import Optional, Tuple

Pos = Tuple[int, int]


class MMLError(ValueError):
    """ Base class of every fatal compile error.
    `pos` is the (line, column) of the offending command, if known. """

    def __init__(self, message: str = '', pos: Optional[Pos] = None):
        super().__init__(message)
        self.message = message
        self.pos = pos

    def __str__(self):
        if self.pos is None:
            return self.message
        line, col = self.pos
        return f'{line}:{col}: {self.message}'


class MMLSyntaxError(MMLError):
    pass


class UnbalancedLoopError(MMLError):
    pass


class MacroRecursionError(MMLError):
    def __init__(self, name: str, message: str = '', pos: Optional[Pos] = None):
        super().__init__(message or f'recursive macro {name}', pos)
        self.name = name


class UndefinedMacroError(MMLError):
    def __init__(self, name: str, pos: Optional[Pos] = None):
        super().__init__(f'undefined macro {name}', pos)
        self.name = name


class EmptyGroupError(MMLError):
    pass


class InvalidParameterError(MMLError):
    pass


class VoiceReferenceError(MMLError):
    pass
