"""Configuration file parsing and the interactive init wizard."""

import logging
import os
from collections.abc import Callable, Iterable
from pathlib import Path

from forgewatch.filters import parse_extensions
from forgewatch.models import WatchConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".forgewatchrc"

# Canonical keys plus the ones written by older releases
KEY_ALIASES = {
    "path": "path",
    "build": "build",
    "extensions": "extensions",
    "ForgWatch_path": "path",
    "ForgWatch_build": "build",
    "ForgWatch_Extension": "extensions",
}


class ConfigError(ValueError):
    """Invalid or incomplete configuration."""


def parse_config_text(text: str) -> dict[str, str]:
    """Parse ``key=value`` lines.

    Blank lines, ``#`` comments and unknown keys are ignored. Later lines win.
    The ``build`` value is kept verbatim; other values are stripped.

    Args:
        text: File contents

    Returns:
        Mapping of canonical key -> raw value
    """
    values: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = line.split("=", 1)
        canonical = KEY_ALIASES.get(key.strip())
        if canonical is None:
            logger.debug(f"Ignoring unknown config key: {key.strip()}")
            continue
        values[canonical] = value if canonical == "build" else value.strip()
    return values


def read_config_file(path: str | Path) -> dict[str, str] | None:
    """Read a config file if it exists.

    Args:
        path: Config file location

    Returns:
        Parsed values, or None if the file does not exist

    Raises:
        ConfigError: If the file exists but cannot be read
    """
    path = Path(path)
    if not path.exists():
        logger.debug(f"No config file at {path}")
        return None
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    return parse_config_text(text)


def resolve_roots(value: str | Iterable[str], base_dir: str | Path | None = None) -> tuple[str, ...]:
    """Resolve whitespace-separated directory paths to absolute paths.

    Args:
        value: Raw ``path`` value or already-split paths
        base_dir: Directory relative entries are resolved against (default: cwd)

    Returns:
        Unique absolute paths in the order given

    Raises:
        ConfigError: If no path is given or one is not an existing directory
    """
    entries = value.split() if isinstance(value, str) else list(value)
    roots: list[str] = []
    for entry in entries:
        expanded = os.path.expanduser(entry)
        if base_dir is not None:
            expanded = os.path.join(base_dir, expanded)
        resolved = os.path.realpath(expanded)
        if not os.path.isdir(resolved):
            raise ConfigError(f"Failed to resolve watch directory path '{entry}'")
        if resolved not in roots:
            roots.append(resolved)
    if not roots:
        raise ConfigError("No directory to watch")
    return tuple(roots)


def build_config(
    paths: str | Iterable[str],
    build: str,
    extensions: str | None = None,
    base_dir: str | Path | None = None,
) -> WatchConfig:
    """Validate raw values into a WatchConfig.

    Relative ``paths`` resolve against ``base_dir`` (default: cwd).

    Raises:
        ConfigError: On missing or invalid values
    """
    if not build or not build.strip():
        raise ConfigError("Build command is empty")
    return WatchConfig(
        roots=resolve_roots(paths, base_dir),
        build_command=build,
        extensions=parse_extensions(extensions),
    )


def load_config(
    config_path: str | Path = CONFIG_FILENAME,
    watch_dirs: str | None = None,
    build_command: str | None = None,
) -> WatchConfig | None:
    """Assemble the configuration from the file and command-line arguments.

    A file providing both ``path`` and ``build`` wins; its relative paths
    resolve against the file's directory. Otherwise the positional arguments
    are used (relative to cwd), still taking ``extensions`` from the file.

    Args:
        config_path: Config file location
        watch_dirs: Positional directory argument (may list several dirs)
        build_command: Positional build command argument

    Returns:
        The configuration, or None if neither source is complete

    Raises:
        ConfigError: If the chosen source holds invalid values
    """
    values = read_config_file(config_path) or {}

    if values.get("path") and values.get("build"):
        return build_config(
            values["path"], values["build"], values.get("extensions"), base_dir=Path(config_path).parent
        )

    if watch_dirs and build_command:
        return build_config(watch_dirs, build_command, values.get("extensions"))

    return None


def write_config(
    path: str | Path,
    roots: Iterable[str],
    build: str,
    extensions: Iterable[str] = (),
) -> Path:
    """Write a config file in the canonical format.

    Args:
        path: Destination file
        roots: Directories to watch
        build: Build command
        extensions: Dot-prefixed extensions (empty: watch everything)

    Returns:
        The written path

    Raises:
        OSError: If the file cannot be written
    """
    path = Path(path)
    lines = [
        f"path={' '.join(roots)}",
        f"build={build}",
        f"extensions={' '.join(extensions)}",
    ]
    path.write_text("\n".join(lines) + "\n")
    return path


def run_init_wizard(
    config_path: str | Path = CONFIG_FILENAME,
    input_fn: Callable[[str], str] = input,
) -> Path:
    """Prompt for the settings and write them to ``config_path``.

    Args:
        config_path: Destination file
        input_fn: Prompt function (``input`` by default)

    Returns:
        The written path

    Raises:
        ConfigError: If a required answer is empty or input ends early
        OSError: If the file cannot be written
    """
    try:
        paths = input_fn("Enter directory to watch: ").strip()
        build = input_fn("Enter build/run command: ").strip()
        extensions = input_fn(
            "Enter every file type you would like to watch. this is in the format of .<extension>\n"
            " space delimited: "
        )
    except EOFError as e:
        raise ConfigError("Unexpected end of input") from e

    if not paths:
        raise ConfigError("Failed to read directory path")
    if not build:
        raise ConfigError("Failed to read build command")

    # Answers are relative to cwd, but the file's paths resolve against its own directory
    config_dir = os.path.abspath(os.path.dirname(config_path))
    roots = [
        entry if os.path.isabs(os.path.expanduser(entry)) else os.path.relpath(os.path.abspath(entry), config_dir)
        for entry in paths.split()
    ]
    return write_config(config_path, roots, build, sorted(parse_extensions(extensions)))
