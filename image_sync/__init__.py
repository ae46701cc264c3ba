"""
image-sync builds the container images of a commit, pushes them under a mutable
and an immutable tag, and points the manifests of a GitOps repository at the
new images in a single commit.
"""

__all__ = [
    "commit",
    "tags",
    "config",
    "docker",
    "builder",
    "manifest",
    "gitops",
    "pipeline",
    "github",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
