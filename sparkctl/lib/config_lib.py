'''
Layered key=value configuration: config.env (checked-in template) and
config.local.env (local override, rewritten by the model switcher).
'''

import os
import re
import shutil
import tempfile

from dotenv import dotenv_values
from dotenv.variables import parse_variables
from pydantic import ValidationError

from sparkctl.lib import globals
from sparkctl.lib.utils_lib import ConfigurationError
from sparkctl.schema.cluster import ClusterSettings

log = globals.log

CONFIG_FILE = 'config.env'
LOCAL_CONFIG_FILE = 'config.local.env'

# Keys owned by the model switcher, deleted and re-appended on every switch
MANAGED_KEYS = [
    'MODEL',
    'TENSOR_PARALLEL',
    'NUM_NODES',
    'MEM_FRACTION',
    'REASONING_PARSER',
    'TOOL_CALL_PARSER',
    'TRUST_REMOTE_CODE',
    'EXTRA_ARGS',
]

MANAGED_BLOCK_TITLE = '# Model Configuration (set by sparkctl switch)'
MANAGED_BLOCK_RULE = '# ' + '━' * 75

# Line matcher for the managed-block rewrite only; values are parsed by dotenv
ASSIGNMENT_PATTERN = r'^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*='


def default_config_dir():
    return os.environ.get('SPARKCTL_CONFIG_DIR', os.getcwd())


def expand_references(value, scope):
    """
    Resolve ${KEY} and ${KEY:-default} against scope with dotenv's variable
    parser. Unknown keys without a default expand to ''.
    """
    return ''.join(atom.resolve(scope) for atom in parse_variables(value))


def parse_env_file( file_path, scope=None ):
    """
    Parse a sourced-style env file into an ordered dictionary.

    Quoting, `export` prefixes and trailing comments are handled by dotenv.
    Interpolation runs against scope rather than os.environ so callers can
    layer files on top of each other.

    Parameters:
      file_path (str): Path to the env file.
      scope (dict): Variables visible to ${...} expansion (usually the process
        environment). Keys assigned earlier in the file are visible to later
        lines, as in a shell.

    Returns:
      dict: KEY -> expanded value, in file order. Missing file gives {}.
    """
    values = {}
    if not os.path.isfile(file_path):
        return values
    lookup = dict(scope or {})
    for key, raw in dotenv_values(file_path, interpolate=False, encoding='utf-8').items():
        if raw is None:
            log.debug(f'Ignoring key without a value in {file_path}: {key}')
            continue
        value = expand_references(raw, lookup)
        values[key] = value
        lookup[key] = value
    return values


def merged_config_values( config_dir, environ=None ):
    """
    Merge environment, config.env and config.local.env (later wins) into
    one flat dictionary.
    """
    if environ is None:
        environ = dict(os.environ)
    merged = dict(environ)
    base_values = parse_env_file(os.path.join(config_dir, CONFIG_FILE), merged)
    merged.update(base_values)
    local_values = parse_env_file(os.path.join(config_dir, LOCAL_CONFIG_FILE), merged)
    merged.update(local_values)
    return merged


def load_settings( config_dir=None, environ=None, overrides=None ):
    """
    Build the immutable ClusterSettings for a command.

    overrides (dict): values from command line flags, applied last.
    Raises ConfigurationError with the validation details on bad values.
    """
    config_dir = config_dir or default_config_dir()
    values = merged_config_values(config_dir, environ)
    if overrides:
        values.update({key: value for key, value in overrides.items() if value is not None})
    if not values.get('WORKER_USER'):
        values['WORKER_USER'] = _current_user(values)
    try:
        settings = ClusterSettings.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f'Invalid configuration in {config_dir}: {e}',
            remediation=f'Fix the values in {os.path.join(config_dir, LOCAL_CONFIG_FILE)} or {CONFIG_FILE}')
    log.debug(f'Loaded settings: {settings.model_dump(exclude={"hf_token"})}')
    return settings


def _current_user(values):
    return values.get('USER') or values.get('LOGNAME') or 'root'


def strip_managed_lines( lines ):
    """Drop every assignment of a managed key and the managed block header."""
    kept = []
    for line in lines:
        match = re.search(ASSIGNMENT_PATTERN, line)
        if match and match.group(1) in MANAGED_KEYS:
            continue
        if line.strip() in (MANAGED_BLOCK_TITLE, MANAGED_BLOCK_RULE):
            continue
        kept.append(line)
    # Trailing blank lines left behind by a previous block
    while kept and not kept[-1].strip():
        kept.pop()
    return kept


def render_managed_block( values ):
    block = ['', MANAGED_BLOCK_RULE, MANAGED_BLOCK_TITLE, MANAGED_BLOCK_RULE]
    for key in MANAGED_KEYS:
        if key in values:
            value = values[key]
            if isinstance(value, bool):
                value = 'true' if value else 'false'
            block.append(f'{key}="{"" if value is None else value}"')
    return block


def update_local_config( config_dir, values ):
    """
    Replace the managed keys in config.local.env with values.

    Starts from config.local.env, else a copy of config.env, else nothing;
    deletes every line assigning a managed key, appends the fresh block and
    swaps the file in atomically. Keys not in MANAGED_KEYS are untouched,
    so applying the same values twice yields the same file.

    Returns the path of the written file.
    """
    unknown = [key for key in values.keys() if key not in MANAGED_KEYS]
    if unknown:
        raise ConfigurationError(f'Not a model configuration key: {", ".join(unknown)}')
    local_path = os.path.join(config_dir, LOCAL_CONFIG_FILE)
    template_path = os.path.join(config_dir, CONFIG_FILE)
    lines = []
    if os.path.isfile(local_path):
        source_path = local_path
    elif os.path.isfile(template_path):
        source_path = template_path
    else:
        source_path = None
    if source_path:
        with open(source_path, 'r', encoding='utf-8') as fp:
            lines = fp.read().split('\n')

    new_lines = strip_managed_lines(lines) + render_managed_block(values)
    fd, tmp_path = tempfile.mkstemp(prefix='.config.local.', dir=config_dir)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as fp:
            fp.write('\n'.join(new_lines) + '\n')
        if source_path:
            shutil.copymode(source_path, tmp_path)
        os.replace(tmp_path, local_path)
    except OSError:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    log.info(f'Wrote managed keys {list(values.keys())} to {local_path}')
    return local_path


def get_current_model( config_dir, environ=None ):
    """Model id the next launch would serve, '' if nothing is configured."""
    return merged_config_values(config_dir, environ or {}).get('MODEL', '')


def has_hf_token( config_dir, environ=None ):
    """True when HF_TOKEN is set in the environment or in config.local.env."""
    if environ is None:
        environ = dict(os.environ)
    if environ.get('HF_TOKEN'):
        return True
    local_values = parse_env_file(os.path.join(config_dir, LOCAL_CONFIG_FILE), environ)
    return bool(local_values.get('HF_TOKEN'))
