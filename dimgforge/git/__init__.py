"""Git access: repositories driven through the git CLI and the diff filter."""

from dimgforge.git.diff_parser import DiffParser, DiffSection, ParserState
from dimgforge.git.repo import GitRepository, LocalGitRepo, RemoteGitRepo, TreeEntry

__all__ = [
    "DiffParser",
    "DiffSection",
    "GitRepository",
    "LocalGitRepo",
    "ParserState",
    "RemoteGitRepo",
    "TreeEntry",
]
