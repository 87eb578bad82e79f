from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Optional, Union

from ruamel.yaml import YAML

from mmltools.errors import MMLError

CONFIG_PATH = 'mml.yaml'

yaml = YAML(typ='safe')


@dataclass(frozen=True)
class VoiceDefaults:
    """ Starting state of a voice. Gate is a percentage of the nominal note length. """
    octave: int = 4
    length: int = 4
    velocity: int = 100
    gate: int = 100
    timing: int = 0


@dataclass(frozen=True)
class CompilerConfig:
    ticks_per_whole: int = 1920
    loop_count: int = 2         # [ without a count plays twice
    max_macro_depth: int = 64
    voice_count: int = 16       # voices are numbered 1..voice_count
    default_voice: int = 1
    velocity_step: int = 8      # ( and ) without a delta
    seed: int = 0               # v/t random ranges

    defaults: VoiceDefaults = VoiceDefaults()
    voices: Dict[int, VoiceDefaults] = field(default_factory=dict)

    def voice_defaults(self, voice: int) -> VoiceDefaults:
        return self.voices.get(voice, self.defaults)


def _parse_voice_defaults(data, base: VoiceDefaults, where: str) -> VoiceDefaults:
    if not isinstance(data, dict):
        raise MMLError(f'invalid {where}, must be YAML key-value map')
    _check_keys(data, VoiceDefaults, where)
    return replace(base, **data)


def _check_keys(data: dict, cls, where: str):
    valid = {f.name for f in fields(cls)}
    unknown = set(data) - valid
    if unknown:
        raise MMLError(
            f'unknown keys {sorted(unknown)} in {where}, options are {sorted(valid)}')


def parse_config(data: Optional[dict]) -> CompilerConfig:
    """ Builds a config from a parsed YAML mapping. Missing keys keep their defaults. """
    if data is None:
        return CompilerConfig()
    if not isinstance(data, dict):
        raise MMLError('invalid config, must be YAML key-value map')

    data = dict(data)
    _check_keys(data, CompilerConfig, 'config')

    defaults = VoiceDefaults()
    if 'defaults' in data:
        defaults = _parse_voice_defaults(data.pop('defaults'), defaults, 'defaults')

    voices = {}
    for voice, voice_data in (data.pop('voices', None) or {}).items():
        voices[int(voice)] = _parse_voice_defaults(voice_data, defaults, f'voices[{voice}]')

    return CompilerConfig(defaults=defaults, voices=voices, **data)


def load_config(path: Union[str, Path]) -> CompilerConfig:
    """ Loads a YAML config file. A missing file yields the default config. """
    try:
        with open(path) as f:
            data = yaml.load(f)
    except FileNotFoundError:
        data = None
    return parse_config(data)
