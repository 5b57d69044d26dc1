"""JSON tree splitter: flattens a nested collection into linked records.

Input is one JSON object whose ``children`` lists nest further objects, e.g.
an archival fonds with series and files. Output is one JSON record per node
in depth-first pre-order, the root first:

- ``children`` is removed.
- Nodes without an ``id`` get ``<root id>_<position>``; ids of non-root
  nodes that differ from the root id are prefixed with ``<root id>_``.
- Every non-root node gets ``host_ids: [<parent id>]``.
- Every node gets ``archive: {"id": <root id>, "sequence": "0000001"}``.
- Fields named in the ``inherited_fields`` param are copied from the
  nearest ancestor that has them when a node lacks them.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

from recstage.records.base import RecordParseError
from recstage.splitters.base import BaseSplitter


class JsonTreeSplitter(BaseSplitter):
    """Split a nested JSON collection into one record per node."""

    def split(self, payload: bytes) -> Iterator[bytes]:
        try:
            root = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise RecordParseError(f"Invalid JSON payload: {exc}") from exc
        if not isinstance(root, dict):
            raise RecordParseError("JSON tree payload must be an object")

        root_id = str(root.get("id") or "").strip()
        if not root_id:
            raise RecordParseError("JSON tree root has no id")

        inherited = list(self.params.get("inherited_fields", []))
        position = 0
        # (node, parent id, inherited values)
        stack: list[tuple[dict[str, Any], str | None, dict[str, Any]]] = [(root, None, {})]
        while stack:
            node, parent_id, ancestors = stack.pop()
            position += 1
            node_id = self._node_id(node, root_id, position, is_root=parent_id is None)

            record = {k: v for k, v in node.items() if k != "children"}
            record["id"] = node_id
            for name in inherited:
                if name not in record and name in ancestors:
                    record[name] = ancestors[name]
            if parent_id is not None:
                record["host_ids"] = [parent_id]
            record["archive"] = {"id": root_id, "sequence": f"{position:07d}"}
            yield json.dumps(record, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

            carried = dict(ancestors)
            carried.update({name: record[name] for name in inherited if name in record})
            children = node.get("children") or []
            if not isinstance(children, list):
                raise RecordParseError(f"'children' of node '{node_id}' must be a list")
            for child in reversed(children):
                if not isinstance(child, dict):
                    raise RecordParseError(f"Child of node '{node_id}' is not an object")
                stack.append((child, node_id, carried))

    @staticmethod
    def _node_id(node: dict[str, Any], root_id: str, position: int, is_root: bool) -> str:
        if is_root:
            return root_id
        own = str(node.get("id") or "").strip()
        if not own:
            return f"{root_id}_{position}"
        return own if own == root_id else f"{root_id}_{own}"
