import pytest
from click.testing import CliRunner

from mmltools.config import CompilerConfig, VoiceDefaults, load_config, parse_config
from mmltools.errors import MMLError


def test_defaults():
    assert parse_config(None) == CompilerConfig()
    config = CompilerConfig()
    assert config.ticks_per_whole == 1920
    assert config.loop_count == 2
    assert config.voice_defaults(3) == VoiceDefaults()


def test_parse_config():
    config = parse_config({
        'ticks_per_whole': 480,
        'seed': 7,
        'defaults': {'octave': 5},
        'voices': {2: {'velocity': 64}, '3': {'gate': 50}},
    })
    assert config.ticks_per_whole == 480
    assert config.seed == 7
    assert config.defaults == VoiceDefaults(octave=5)
    assert config.voice_defaults(1) == VoiceDefaults(octave=5)
    assert config.voice_defaults(2) == VoiceDefaults(octave=5, velocity=64)
    assert config.voice_defaults(3) == VoiceDefaults(octave=5, gate=50)


@pytest.mark.parametrize('data', [
    [1, 2],
    {'tempo': 120},
    {'defaults': {'volume': 3}},
    {'defaults': 4},
    {'voices': {1: {'octave': 4, 'pan': 0}}},
])
def test_invalid(data):
    with pytest.raises(MMLError):
        parse_config(data)


def test_load_config():
    with CliRunner().isolated_filesystem():
        assert load_config('missing.yaml') == CompilerConfig()

        with open('mml.yaml', 'w') as f:
            f.write('loop_count: 3\ndefaults:\n  length: 8\n')
        config = load_config('mml.yaml')
        assert config.loop_count == 3
        assert config.defaults.length == 8
