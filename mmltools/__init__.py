from mmltools.config import CompilerConfig, VoiceDefaults, load_config
from mmltools.errors import MMLError
from mmltools.events import Event, EventKind, Performance
from mmltools.interpreter import compile_commands, compile_mml
from mmltools.tokenizer import tokenize
