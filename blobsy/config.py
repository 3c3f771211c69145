r"""
``config``: Hierarchical ``.blobsy.yml`` configuration
========================================================

Settings are resolved from several YAML files, later ones winning:

1.  Built-in defaults (:func:`get_builtin_defaults`)
2.  User-global ``~/.blobsy.yml``
3.  ``.blobsy.yml`` at the repo root
4.  ``.blobsy.yml`` in each subfolder between the root and the target

The merge is shallow: a top-level key present in a later file replaces
the whole value from earlier files. To change only ``compress.min_size``
in a subfolder, repeat the entire ``compress`` section there.
"""

# Standard library
import copy
import os

# Third-party
import yaml

# Local imports
from .blobsyerror import BlobsyKeyError, BlobsyValidationError
from .keytemplate import DEFAULT_KEY_TEMPLATE
from .paths import atomic_write


# Name of config files
CONFIG_FILENAME = ".blobsy.yml"

# Built-in default settings
BUILTIN_DEFAULTS = {
    "externalize": {
        "min_size": "1mb",
        "always": [
            "*.parquet",
            "*.bin",
            "*.weights",
            "*.onnx",
            "*.safetensors",
            "*.pkl",
            "*.pt",
            "*.h5",
            "*.arrow",
            "*.sqlite",
            "*.db",
        ],
        "never": [],
    },
    "compress": {
        "algorithm": "zstd",
        "min_size": "100kb",
        "always": [
            "*.json",
            "*.csv",
            "*.tsv",
            "*.txt",
            "*.jsonl",
            "*.xml",
            "*.sql",
        ],
        "never": [
            "*.gz",
            "*.zst",
            "*.zip",
            "*.tar.*",
            "*.parquet",
            "*.png",
            "*.jpg",
            "*.jpeg",
            "*.mp4",
            "*.webp",
            "*.avif",
        ],
    },
    "remote": {
        "key_template": DEFAULT_KEY_TEMPLATE,
    },
    "sync": {
        "tools": ["aws-cli", "rclone"],
        "parallel": 8,
    },
    "checksum": {
        "algorithm": "sha256",
    },
    "ignore": [
        "node_modules/**",
        ".git/**",
        ".blobsy/**",
        "*.tmp",
    ],
}

# Sections that must be mappings
_MAPPING_SECTIONS = ("backends", "externalize", "compress")
# Sections that must be lists
_LIST_SECTIONS = ("ignore",)


def get_builtin_defaults() -> dict:
    # Fresh copy each time so callers may modify it
    return copy.deepcopy(BUILTIN_DEFAULTS)


def get_config_path(repo_root: str) -> str:
    return os.path.join(repo_root, CONFIG_FILENAME)


def get_global_config_path(home=None) -> str:
    # Default to user's home folder
    if home is None:
        home = os.path.expanduser("~")
    return os.path.join(home, CONFIG_FILENAME)


# Read one file
def load_config_file(fname: str) -> dict:
    r"""Read and validate one ``.blobsy.yml`` file

    :Call:
        >>> config = load_config_file(fname)
    :Inputs:
        *fname*: :class:`str`
            Name of config file
    :Outputs:
        *config*: :class:`dict`
            Settings from file (empty if file is empty)
    :Raises:
        :class:`BlobsyValidationError` if the file can't be read, isn't
        valid YAML, or has sections of the wrong type
    """
    # Read file
    try:
        with open(fname, "r", encoding="utf-8") as fp:
            txt = fp.read()
    except OSError as err:
        raise BlobsyValidationError(
            f"Cannot read config file: {fname}: {err.strerror or err}")
    # Parse
    try:
        config = yaml.safe_load(txt)
    except yaml.YAMLError as err:
        raise BlobsyValidationError(
            f"Malformed YAML in config file: {fname}: {err}",
            suggestions=[
                f"Check that {CONFIG_FILENAME} contains valid YAML"])
    # Empty file
    if config is None:
        return {}
    # Check type
    if not isinstance(config, dict):
        raise BlobsyValidationError(
            f"Invalid config file (not a mapping): {fname}")
    # Check sections
    _valid8_config(config, fname)
    # Output
    return config


def write_config_file(fname: str, config: dict):
    # Write YAML, preserving key order
    atomic_write(
        fname,
        yaml.safe_dump(config, default_flow_style=False, sort_keys=False))


def merge_configs(base: dict, override: dict) -> dict:
    r"""Shallow merge of two configs

    Each top-level key in *override* replaces the same key in *base*;
    ``None`` values in *override* are ignored.

    :Call:
        >>> config = merge_configs(base, override)
    """
    # Copy
    config = dict(base)
    # Apply overrides
    for key, val in override.items():
        if val is not None:
            config[key] = val
    # Output
    return config


# Full resolution
def resolve_config(target: str, repo_root: str, home=None) -> dict:
    r"""Get effective config for a file or folder in a repo

    :Call:
        >>> config = resolve_config(target, repo_root, home=None)
    :Inputs:
        *target*: :class:`str`
            File or folder whose settings are needed
        *repo_root*: :class:`str`
            Top level of working repo
        *home*: {``None``} | :class:`str`
            Folder holding user-global config; default is ``~``
    :Outputs:
        *config*: :class:`dict`
            Merged settings
    """
    # Start with defaults
    config = get_builtin_defaults()
    # User-global config
    fglobal = get_global_config_path(home)
    if os.path.isfile(fglobal):
        config = merge_configs(config, load_config_file(fglobal))
    # Absolute paths
    root = os.path.realpath(repo_root)
    fdir = os.path.realpath(target)
    # Start from folder containing target if it's a file
    if not os.path.isdir(fdir):
        fdir = os.path.dirname(fdir)
    # Collect config files from target up to repo root
    fcfgs = []
    while fdir == root or fdir.startswith(root + os.sep):
        # Check for file in this folder
        fcfg = os.path.join(fdir, CONFIG_FILENAME)
        if os.path.isfile(fcfg):
            fcfgs.insert(0, fcfg)
        # Move up
        fparent = os.path.dirname(fdir)
        if fparent == fdir:
            break
        fdir = fparent
    # Apply from root down to nearest folder
    for fcfg in fcfgs:
        config = merge_configs(config, load_config_file(fcfg))
    # Output
    return config


def get_externalize_config(config: dict) -> dict:
    r"""Get externalize policy, filling missing fields from defaults"""
    return _get_policy(config, "externalize")


def get_compress_config(config: dict) -> dict:
    r"""Get compression policy, filling missing fields from defaults"""
    return _get_policy(config, "compress")


def get_ignore_patterns(config: dict) -> list:
    # Fall back to defaults
    return config.get("ignore", BUILTIN_DEFAULTS["ignore"])


def get_key_template(config: dict) -> str:
    # Remote section
    remote = config.get("remote") or {}
    return remote.get("key_template") or DEFAULT_KEY_TEMPLATE


def get_sync_tools(config: dict) -> list:
    # Sync section
    sync = config.get("sync") or {}
    return sync.get("tools", BUILTIN_DEFAULTS["sync"]["tools"])


# Dotted-name access
def config_get(config: dict, fullopt: str):
    r"""Get a setting by dotted name, e.g. ``"compress.algorithm"``

    :Call:
        >>> val = config_get(config, fullopt)
    :Inputs:
        *config*: :class:`dict`
            Resolved settings
        *fullopt*: :class:`str`
            Dotted option name
    :Outputs:
        *val*: :class:`object`
            Value of setting
    :Raises:
        :class:`BlobsyKeyError` if any part of *fullopt* is missing
    """
    # Current level
    val = config
    # Loop through parts
    for part in fullopt.split("."):
        # Check
        if not isinstance(val, dict) or part not in val:
            raise BlobsyKeyError(
                f"No config setting '{fullopt}'",
                suggestions=["Run: blobsy config  (to show all settings)"])
        # Descend
        val = val[part]
    # Output
    return val


def config_set_file(fname: str, fullopt: str, val):
    r"""Set a setting by dotted name in one config file

    String values are parsed as YAML so ``"8"`` becomes ``8`` and
    ``"[a, b]"`` becomes a list.

    :Call:
        >>> config_set_file(fname, fullopt, val)
    :Inputs:
        *fname*: :class:`str`
            Config file to modify (created if needed)
        *fullopt*: :class:`str`
            Dotted option name
        *val*: :class:`object`
            Value to set
    """
    # Read current file
    config = load_config_file(fname) if os.path.isfile(fname) else {}
    # Parse string values
    val = _from_yaml(val)
    # Split name
    parts = fullopt.split(".")
    # Descend, creating sections
    section = config
    for part in parts[:-1]:
        # Create section if needed
        if not isinstance(section.get(part), dict):
            section[part] = {}
        section = section[part]
    # Set value
    section[parts[-1]] = val
    # Validate before writing
    _valid8_config(config, fname)
    # Save
    write_config_file(fname, config)


def _from_yaml(val):
    # Only strings are parsed
    if not isinstance(val, str):
        return val
    # Text that isn't valid YAML is kept as a plain string
    try:
        return yaml.safe_load(val)
    except yaml.YAMLError:
        return val


def _get_policy(config: dict, name: str) -> dict:
    # Defaults for this section
    policy = copy.deepcopy(BUILTIN_DEFAULTS[name])
    # Fill in user settings field by field
    for key, val in (config.get(name) or {}).items():
        if val is not None:
            policy[key] = val
    # Output
    return policy


def _valid8_config(config: dict, fname: str):
    # Check mapping sections
    for sec in _MAPPING_SECTIONS:
        if sec in config and not isinstance(config[sec], dict):
            raise BlobsyValidationError(
                f"Invalid '{sec}' in {fname}: expected a mapping")
    # Check list sections
    for sec in _LIST_SECTIONS:
        if sec in config and not isinstance(config[sec], list):
            raise BlobsyValidationError(
                f"Invalid '{sec}' in {fname}: expected a list")
