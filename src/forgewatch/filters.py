"""Filename predicates deciding whether a change may trigger a build."""

from collections.abc import Iterable

# Editor swap files, scratch files and backups
NOISE_SUFFIXES = (".swp", ".swo", ".tmp", "~")


def is_noise(name: str) -> bool:
    """Check whether a changed entry name is editor/backup noise.

    Dotfiles (which includes Emacs ``.#lock`` files) and the fixed
    ``NOISE_SUFFIXES`` never trigger a build.

    Args:
        name: Entry name (not a path)

    Returns:
        True if the name must be ignored
    """
    if not name:
        return True
    if name.startswith("."):
        return True
    return name.endswith(NOISE_SUFFIXES)


def parse_extensions(value: str | Iterable[str] | None) -> frozenset[str]:
    """Parse a whitespace-separated extension list into a set.

    Empty tokens are dropped. Tokens are kept verbatim, so ``"c"`` without a
    leading dot never matches anything.

    Args:
        value: Raw configuration string, an iterable of tokens, or None

    Returns:
        Frozen set of extensions, empty when everything should be watched
    """
    if value is None:
        return frozenset()
    tokens = value.split() if isinstance(value, str) else value
    return frozenset(token.strip() for token in tokens if token and token.strip())


def is_watched_extension(name: str, allow_list: frozenset[str] | set[str] | None) -> bool:
    """Check whether a name's extension is in the allow-list.

    Only consulted for names that already passed :func:`is_noise`.

    Args:
        name: Entry name
        allow_list: Parsed extensions; empty or None allows everything

    Returns:
        True if the name should trigger a build
    """
    if not allow_list:
        return True

    dot = name.rfind(".")
    if dot < 0:
        return False
    return name[dot:] in allow_list
