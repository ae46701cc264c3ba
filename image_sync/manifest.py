"""Rewrite container image references in Kubernetes manifests.

Manifests are edited with a round-trip YAML parse so comments, quoting, and
the layout of unrelated fields are preserved:
```python
from image_sync.config import ManifestTarget
from image_sync.manifest import update_image

target = ManifestTarget(path="vproappdep.yml", image="app", container="vproapp")
content = update_image(content, target, "user/vprofileapp2:prod-a1b2c3d")
```
"""

from collections.abc import Iterator
import io
import logging
import re
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError
from ruamel.yaml.scalarstring import ScalarString
from ruamel.yaml.util import load_yaml_guess_indent

from .config import ManifestTarget
from .exceptions import ManifestFieldNotFound

__all__ = [
    "update_image",
    "find_images",
    "image_repository_of",
]

_LOGGER = logging.getLogger(__name__)

IMAGE_KEY = "image"
CONTAINER_KEYS = ["containers", "initContainers"]

# Path from the object to its pod spec, by kind
POD_SPEC_PATHS: dict[str, list[str]] = {
    "Pod": ["spec"],
    "Deployment": ["spec", "template", "spec"],
    "StatefulSet": ["spec", "template", "spec"],
    "DaemonSet": ["spec", "template", "spec"],
    "ReplicaSet": ["spec", "template", "spec"],
    "ReplicationController": ["spec", "template", "spec"],
    "Job": ["spec", "template", "spec"],
    "CronJob": ["spec", "jobTemplate", "spec", "template", "spec"],
}

DEFAULT_MAPPING_INDENT = 2
DEFAULT_SEQUENCE_INDENT = 4
DEFAULT_SEQUENCE_OFFSET = 2

_DOCUMENT_START = re.compile(r"^---(?:\s|$)", re.MULTILINE)
_TRAILING_SEPARATOR = re.compile(r"^---\s*\Z", re.MULTILINE)


def image_repository_of(reference: str) -> str:
    """Return the repository of an image reference, without tag or digest."""
    name = reference.split("@", 1)[0]
    # A colon after the last slash separates the tag, otherwise it is a port
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        name = name[:colon]
    return name


def _guess_indent(content: str) -> tuple[int | None, int | None]:
    """Return the sequence layout of the first document that has a sequence."""
    for document in _DOCUMENT_START.split(content):
        try:
            _, indent, block_seq_indent = load_yaml_guess_indent(document)
        except YAMLError:
            # Reported when the whole stream is loaded
            return None, None
        if indent is not None and block_seq_indent is not None:
            return indent, block_seq_indent
    return None, None


def _yaml(content: str) -> YAML:
    """Return a round-trip YAML instance matching the layout of the content."""
    yaml = YAML(typ="rt")
    yaml.preserve_quotes = True
    yaml.width = 4096
    mapping = DEFAULT_MAPPING_INDENT
    sequence = DEFAULT_SEQUENCE_INDENT
    offset = DEFAULT_SEQUENCE_OFFSET
    indent, block_seq_indent = _guess_indent(content)
    if indent is not None and block_seq_indent is not None:
        mapping = max(block_seq_indent, DEFAULT_MAPPING_INDENT)
        sequence = indent
        offset = block_seq_indent
    yaml.indent(mapping=mapping, sequence=sequence, offset=offset)
    yaml.explicit_start = content.lstrip().startswith("---")
    return yaml


def _load(yaml: YAML, content: str, path: str) -> list[Any]:
    try:
        return list(yaml.load_all(content))
    except YAMLError as err:
        raise ManifestFieldNotFound(path, f"failed to parse as yaml: {err}") from err


def _get_path(doc: Any, keys: list[str]) -> Any:
    for key in keys:
        if not isinstance(doc, dict) or key not in doc:
            return None
        doc = doc[key]
    return doc


def _matching_documents(docs: list[Any], target: ManifestTarget) -> Iterator[Any]:
    for doc in docs:
        if not isinstance(doc, dict) or doc.get("kind") != target.kind:
            continue
        if target.resource is not None:
            metadata = doc.get("metadata") or {}
            if metadata.get("name") != target.resource:
                continue
        yield doc


def _containers(doc: Any, target: ManifestTarget) -> list[Any]:
    """Return the containers of the pod spec of a document."""
    if (path := POD_SPEC_PATHS.get(target.kind)) is None:
        raise ManifestFieldNotFound(
            target.path, f"kind '{target.kind}' does not have a pod template"
        )
    pod_spec = _get_path(doc, path)
    if not isinstance(pod_spec, dict):
        return []
    containers = []
    for key in CONTAINER_KEYS:
        if isinstance(items := pod_spec.get(key), list):
            containers.extend(item for item in items if isinstance(item, dict))
    return containers


def _select_containers(
    containers: list[Any], target: ManifestTarget, repository: str | None
) -> list[Any]:
    """Select the containers whose image field is rewritten."""
    if target.container is not None:
        return [c for c in containers if c.get("name") == target.container]
    if repository is not None:
        matches = [
            c
            for c in containers
            if isinstance(c.get(IMAGE_KEY), str)
            and image_repository_of(c[IMAGE_KEY]) == repository
        ]
        if matches:
            return matches
    if len(containers) == 1:
        return containers
    return []


def _replace_scalar(old: Any, new: str) -> Any:
    """Return the new value in the quoting style of the old one."""
    if isinstance(old, ScalarString):
        return type(old)(new)
    return new


def _object_name(target: ManifestTarget) -> str:
    if target.resource:
        return f"{target.kind}/{target.resource}"
    return target.kind


def _describe(target: ManifestTarget) -> str:
    if target.container:
        return f"container '{target.container}' of {_object_name(target)}"
    return f"container of {_object_name(target)}"


def find_images(content: str, target: ManifestTarget) -> list[str]:
    """Return the current image references of a manifest target."""
    docs = _load(_yaml(content), content, target.path)
    images = []
    for doc in _matching_documents(docs, target):
        for container in _containers(doc, target):
            name = container.get("name")
            if target.container is not None and name != target.container:
                continue
            if isinstance(image := container.get(IMAGE_KEY), str):
                images.append(image)
    return images


def update_image(content: str, target: ManifestTarget, image_ref: str) -> str:
    """Return the manifest content with the target's image set to image_ref.

    Raises:
        ManifestFieldNotFound: If no document, container, or image field
            matches the target.
    """
    yaml = _yaml(content)
    docs = _load(yaml, content, target.path)
    matched_docs = list(_matching_documents(docs, target))
    if not matched_docs:
        raise ManifestFieldNotFound(
            target.path, f"no {_object_name(target)} document found"
        )

    repository = image_repository_of(image_ref)
    updated = 0
    for doc in matched_docs:
        for container in _select_containers(
            _containers(doc, target), target, repository
        ):
            if IMAGE_KEY not in container:
                raise ManifestFieldNotFound(
                    target.path, f"{_describe(target)} has no '{IMAGE_KEY}' field"
                )
            if container[IMAGE_KEY] != image_ref:
                _LOGGER.debug(
                    "%s: %s -> %s", target.path, container[IMAGE_KEY], image_ref
                )
            container[IMAGE_KEY] = _replace_scalar(container[IMAGE_KEY], image_ref)
            updated += 1
    if not updated:
        raise ManifestFieldNotFound(target.path, f"no {_describe(target)} found")

    # Empty documents, such as after a trailing separator, load as None
    documents = [doc for doc in docs if doc is not None]
    stream = io.StringIO()
    if len(documents) == 1:
        yaml.dump(documents[0], stream)
    else:
        yaml.dump_all(documents, stream)
    if _TRAILING_SEPARATOR.search(content):
        stream.write("---\n")
    return stream.getvalue()
