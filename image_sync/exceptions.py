"""Exceptions related to image-sync."""

__all__ = [
    "ImageSyncException",
    "InputException",
    "CommandException",
    "BuildFailure",
    "PushFailure",
    "TagConflict",
    "BuildsFailed",
    "PipelineCancelled",
    "GitOpsException",
    "CloneFailure",
    "ManifestFieldNotFound",
    "PushRejected",
]


class ImageSyncException(Exception):
    """Generic base exception used for this library."""


class InputException(ImageSyncException):
    """Raised when the input values or configuration are not formatted as expected."""


class CommandException(ImageSyncException):
    """Raised when there is a failure running a subcommand."""


class BuildFailure(CommandException):
    """Raised when there is a failure building a container image."""


class PushFailure(CommandException):
    """Raised when there is a failure authenticating or pushing to the registry."""


class TagConflict(PushFailure):
    """Raised when an immutable tag already exists with different content."""

    def __init__(self, reference: str, existing: str, built: str) -> None:
        super().__init__(
            f"Immutable tag {reference} already exists with digest {existing}, "
            f"refusing to overwrite with {built}"
        )
        self.reference = reference
        self.existing = existing
        self.built = built


class BuildsFailed(ImageSyncException):
    """Raised when one or more image builds failed and the barrier is not passed."""

    def __init__(self, errors: dict[str, str]) -> None:
        details = "\n".join(f"  {name}: {error}" for name, error in errors.items())
        super().__init__(
            f"{len(errors)} image build(s) failed: {', '.join(errors)}\n{details}"
        )
        self.errors = errors


class PipelineCancelled(ImageSyncException):
    """Raised when a run times out or is cancelled before all builds completed."""


class GitOpsException(ImageSyncException):
    """Raised when there is a failure updating the manifest repository."""


class CloneFailure(GitOpsException):
    """Raised when the manifest repository could not be cloned."""


class ManifestFieldNotFound(GitOpsException):
    """Raised when the image field to rewrite is absent from a manifest."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"Manifest {path}: {message}")
        self.path = path


class PushRejected(GitOpsException):
    """Raised when the manifest repository rejected the push as non-fast-forward."""

    def __init__(self, branch: str, attempts: int, message: str | None) -> None:
        super().__init__(
            f"Push to branch '{branch}' rejected after {attempts} attempt(s): "
            f"{message or 'Unknown error'}"
        )
        self.branch = branch
        self.attempts = attempts
