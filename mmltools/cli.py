#!/usr/bin/env python3
import io
import logging
import sys
from pathlib import Path
from typing import List, Optional

import click
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from mmltools.config import CONFIG_PATH, load_config
from mmltools.errors import MMLError
from mmltools.interpreter import compile_mml

RETURN_ERR = 1

out_yaml = YAML(typ='safe')
out_yaml.default_flow_style = False


def perr(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)


def report_error(in_str: str, e: MMLError):
    """ Prints the offending line, with a caret under the failing command. """
    perr()
    perr('#### MML compile error ####')
    perr('  ' + str(e))
    if e.pos is None:
        return

    line, col = e.pos
    lines = in_str.split('\n')
    if 1 <= line <= len(lines):
        perr('  Context:')
        perr('    ' + lines[line - 1])
        perr('    ' + ' ' * (col - 1) + '^')


def read_files(paths: List[Path]) -> str:
    datas = []
    for path in paths:
        with open(path) as ifile:
            datas.append(ifile.read())
    return '\n'.join(datas)


def set_verbosity(verbose: int):
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(format='%(levelname)s: %(name)s: %(message)s')
    logging.root.setLevel(level)


def pathify(_ctx, _param, value):
    if value is None:
        return None
    if isinstance(value, tuple):
        return [Path(v) for v in value]
    return Path(value)


@click.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False),
                callback=pathify)
@click.option(*'config --config -c'.split(), type=click.Path(dir_okay=False), callback=pathify,
              help=f'YAML compiler config (defaults to {CONFIG_PATH} beside the first file)')
@click.option('--from-here', is_flag=True,
              help='Only print events after the last "?" marker')
@click.option(*'verbose --verbose -v'.split(), count=True)
def main(files: List[Path], config: Optional[Path], from_here: bool, verbose: int):
    """ Compile MML FILES (concatenated) and print the performance as YAML events. """
    set_verbosity(verbose)

    if config is None:
        config = files[0].parent / CONFIG_PATH
    try:
        compiler_config = load_config(config)
    except (MMLError, YAMLError) as e:
        perr(f'Error: invalid config file {config}: {e}')
        sys.exit(RETURN_ERR)

    in_str = read_files(files)
    try:
        performance = compile_mml(in_str, compiler_config)
    except MMLError as e:
        report_error(in_str, e)
        sys.exit(RETURN_ERR)

    events = performance.from_here() if from_here else performance.events
    click.echo(dump_events(event.to_dict() for event in events), nl=False)


def dump_events(events) -> str:
    out = io.StringIO()
    out_yaml.dump(list(events), out)
    return out.getvalue()


if __name__ == '__main__':
    main()
