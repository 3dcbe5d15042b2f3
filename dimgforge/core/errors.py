"""Error taxonomy for dimgforge.

Five kinds of failure are distinguished:

* ``ConfigurationError`` — the dappfile or a request against it is wrong.
* ``GitOperationError`` — a git command failed; carries the repository.
* ``DiffParseError`` — a diff stream broke the expected grammar.
* ``StageBuildError`` — the container runtime failed to build a layer.
* ``InternalInvariantViolation`` — an implementation/schema mismatch.
  Never caught per-image; it aborts the whole run.

Nothing in dimgforge retries.  The recovery path is re-running the build.
"""

from __future__ import annotations


class DimgforgeError(RuntimeError):
    """Base class for every error raised by dimgforge."""


class ConfigurationError(DimgforgeError):
    """Raised when the dimg configuration cannot be turned into a build plan."""


class GitOperationError(DimgforgeError):
    """Raised when a git command fails.

    Parameters
    ----------
    repo_name:
        Identity of the repository (``own`` or the remote name).
    message:
        What went wrong, usually including git's stderr.
    """

    def __init__(self, repo_name: str, message: str) -> None:
        self.repo_name = repo_name
        super().__init__(f"git repo '{repo_name}': {message}")


class DiffParseError(DimgforgeError):
    """Raised when a diff line has no valid transition in the current state."""

    def __init__(self, line: str, state: str, artifact: str = "") -> None:
        self.line = line
        self.state = state
        self.artifact = artifact
        where = f" (git artifact {artifact})" if artifact else ""
        super().__init__(
            f"unexpected diff line in state `{state}`{where}: {line!r}"
        )


class InternalInvariantViolation(DimgforgeError):
    """Raised when an internal lookup or type assumption fails.

    This indicates a bug rather than bad user input and must not be
    handled by skipping the current image.
    """


class StageBuildError(DimgforgeError):
    """Raised when the container runtime fails to materialize a stage layer."""

    def __init__(self, dimg_name: str, stage: str, message: str) -> None:
        self.dimg_name = dimg_name
        self.stage = stage
        super().__init__(f"dimg '{dimg_name}' stage `{stage}`: {message}")
