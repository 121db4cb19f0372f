"""Hierarchy paths and content-addressed identifiers.

Every prefix of a target path maps to a stable identifier derived from the
MD5 digest of the joined prefix string, so re-ingesting the same path always
resolves to the same remote node or leaf.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from dirwatch.exceptions import LeafIngestionError
from dirwatch.ingestion.models import LeafRequest, NodeRequest, RelationshipRequest

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


def content_id(path_string: str) -> str:
    """Deterministic UUID string for a hierarchy path.

    Example:
        >>> content_id("Root>>Sub>>Signal1") == content_id("Root>>Sub>>Signal1")
        True
    """
    return str(uuid.UUID(bytes_le=hashlib.md5(path_string.encode("utf-8")).digest()))


def split_path(path: str, separator: str) -> list[str]:
    """Split a target path into segments.

    Raises:
        LeafIngestionError: If any segment is empty (repeated, leading or
            trailing separator)
    """
    segments = path.split(separator)
    if any(not segment for segment in segments):
        raise LeafIngestionError(
            f"Failed to create tree from path {path!r} due to repeated separator {separator!r}",
            leaf_path=path,
        )
    return segments


@dataclass
class HierarchyPlan:
    """Deduplicated upsert requests for one packet.

    Attributes:
        nodes: Intermediate nodes (the root is assumed to exist)
        leaves: Leaf definitions, one per valid target path
        relationships: Parent/child links, nodes before leaves
        leaf_ids: Target path -> leaf data id
        errors: Target path -> reason it was excluded
    """

    nodes: list[NodeRequest] = field(default_factory=list)
    leaves: list[LeafRequest] = field(default_factory=list)
    relationships: list[RelationshipRequest] = field(default_factory=list)
    leaf_ids: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


def build_hierarchy_plan(
    paths: Iterable[str],
    separator: str,
    define_leaf: Callable[[str, str, str], LeafRequest],
    no_tree: bool = False,
) -> HierarchyPlan:
    """Plan nodes, leaves and relationships for a set of target paths.

    Args:
        paths: Distinct target paths, in the order they should be created
        separator: Path separator
        define_leaf: Builds the leaf request from (path, leaf name, data id);
            may raise LeafIngestionError to exclude that path
        no_tree: Plan leaves only, with no nodes or relationships

    Returns:
        The plan; invalid paths are listed in ``errors`` and nowhere else
    """
    plan = HierarchyPlan()
    known_nodes: set[str] = set()

    for path in paths:
        try:
            segments = split_path(path, separator)
            leaf_id = content_id(path)
            leaf = define_leaf(path, segments[-1], leaf_id)
        except LeafIngestionError as e:
            plan.errors[path] = e.message
            continue

        if not no_tree and len(segments) > 1:
            prefix = segments[0]
            parent_id = content_id(prefix)
            for segment in segments[1:-1]:
                prefix = f"{prefix}{separator}{segment}"
                node_id = content_id(prefix)
                if node_id not in known_nodes:
                    known_nodes.add(node_id)
                    plan.nodes.append(NodeRequest(data_id=node_id, name=segment, path=prefix))
                    plan.relationships.append(RelationshipRequest(parent_id=parent_id, child_id=node_id))
                parent_id = node_id
            plan.relationships.append(RelationshipRequest(parent_id=parent_id, child_id=leaf_id))

        plan.leaves.append(leaf)
        plan.leaf_ids[path] = leaf_id

    return plan
