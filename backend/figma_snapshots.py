"""
Snapshot diffing for node projections.

A snapshot is either a list of node projections or an object carrying that
list under ``nodes`` (the shape returned by the plugin's ``snapshot_nodes``).
Every projection is keyed by its string ``id``; projections without one are
skipped. The diff is flat: ``children`` is ignored unless the caller passes
an explicit ``ignore_fields`` list.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_FIELDS = ("children",)

_MISSING = object()


def normalize_snapshot(snapshot: Any) -> List[Dict[str, Any]]:
    if isinstance(snapshot, list):
        return snapshot
    if isinstance(snapshot, dict) and isinstance(snapshot.get("nodes"), list):
        return snapshot["nodes"]
    return []


def _index_by_id(nodes: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
    indexed: Dict[str, Dict[str, Any]] = {}
    for node in nodes:
        if isinstance(node, dict) and isinstance(node.get("id"), str):
            indexed[node["id"]] = node
    return indexed


def _canonical(value: Any) -> str:
    # Sorted keys: two projections that differ only in key order compare equal
    if value is _MISSING:
        return "<missing>"
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def diff_fields(before: Dict[str, Any], after: Dict[str, Any], ignore: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    ignored = set(ignore)
    keys = list(before.keys()) + [k for k in after.keys() if k not in before]
    fields: Dict[str, Dict[str, Any]] = {}
    for key in keys:
        if key in ignored:
            continue
        before_value = before.get(key, _MISSING)
        after_value = after.get(key, _MISSING)
        if _canonical(before_value) != _canonical(after_value):
            fields[key] = {
                "before": None if before_value is _MISSING else before_value,
                "after": None if after_value is _MISSING else after_value,
            }
    return fields


def diff_snapshots(before: Any, after: Any, ignore_fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Compare two snapshots and report added, removed and changed nodes."""
    before_map = _index_by_id(normalize_snapshot(before))
    after_map = _index_by_id(normalize_snapshot(after))
    ignore = DEFAULT_IGNORE_FIELDS if ignore_fields is None else tuple(f for f in ignore_fields if isinstance(f, str))

    added = [node for node_id, node in after_map.items() if node_id not in before_map]
    removed = [node for node_id, node in before_map.items() if node_id not in after_map]

    changed = []
    for node_id, before_node in before_map.items():
        after_node = after_map.get(node_id)
        if after_node is None:
            continue
        fields = diff_fields(before_node, after_node, ignore)
        if fields:
            changed.append({"id": node_id, "fields": fields})

    logger.debug(f"🔍 Diff: +{len(added)} -{len(removed)} ~{len(changed)}")
    return {
        "addedCount": len(added),
        "removedCount": len(removed),
        "changedCount": len(changed),
        "added": added,
        "removed": removed,
        "changed": changed,
    }
