"""Shared data models for forgewatch."""

import os
from dataclasses import dataclass, field
from enum import Enum


class ChangeKind(Enum):
    """Kind of filesystem change reported by a backend."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    OTHER = "other"


@dataclass(frozen=True)
class WatchConfig:
    """Immutable daemon configuration, built once before the loop starts."""

    roots: tuple[str, ...]
    """Absolute directory paths to watch recursively, in configured order."""

    build_command: str
    """Shell command run (and re-run) on every accepted change."""

    extensions: frozenset[str] = field(default_factory=frozenset)
    """Dot-prefixed extensions to react to. Empty means every file counts."""

    def __post_init__(self) -> None:
        if not self.roots:
            raise ValueError("WatchConfig requires at least one root directory")
        if not self.build_command.strip():
            raise ValueError("WatchConfig requires a non-empty build command")


@dataclass(frozen=True)
class ChangeEvent:
    """A single change notification, as produced by a backend."""

    affected_path: str
    """The watched directory the change was observed in."""

    name: str
    """Entry name inside ``affected_path``; empty for events on the directory itself."""

    is_directory: bool
    """Whether the entry is a directory."""

    kind: ChangeKind
    """What happened to the entry."""

    @property
    def full_path(self) -> str:
        """Absolute path of the entry the event is about."""
        if not self.name:
            return self.affected_path
        return os.path.join(self.affected_path, self.name)


@dataclass
class EnrollResult:
    """Outcome of enrolling a directory tree."""

    root: str
    enrolled: list[str] = field(default_factory=list)
    """Directories newly subscribed during this walk."""

    failed: list[str] = field(default_factory=list)
    """Directories the backend refused; their children were not visited."""

    over_limit: list[str] = field(default_factory=list)
    """Directories skipped because the watch limit was reached."""

    @property
    def ok(self) -> bool:
        """True when every directory seen was subscribed."""
        return not self.failed and not self.over_limit
