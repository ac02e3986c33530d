"""Directory-style projection of the URLs crawled for a job."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from docucrawl.orchestrator.jobs import EntryStatus, QueueEntry

EMPTY_TREE_NAME = "No URLs discovered"


@dataclass
class UrlTreeNode:
    name: str
    path: str
    type: str = "directory"
    children: Optional[List["UrlTreeNode"]] = field(default_factory=list)
    status: Optional[EntryStatus] = None
    entry_id: Optional[str] = None

    def child(self, path: str) -> Optional["UrlTreeNode"]:
        for node in self.children or ():
            if node.path == path:
                return node
        return None

    def add_child(self, node: "UrlTreeNode") -> "UrlTreeNode":
        if self.children is None:
            self.children = []
        self.type = "directory"
        self.children.append(node)
        return node

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"name": self.name, "path": self.path, "type": self.type}
        if self.children is not None:
            payload["children"] = [child.to_dict() for child in self.children]
        if self.status is not None:
            payload["status"] = self.status.value
        if self.entry_id is not None:
            payload["entry_id"] = self.entry_id
        return payload

    def leaves(self) -> Iterable["UrlTreeNode"]:
        if self.entry_id is not None:
            yield self
        for node in self.children or ():
            yield from node.leaves()


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _mark(node: UrlTreeNode, entry: QueueEntry) -> None:
    node.status = entry.status
    node.entry_id = entry.id


def build_tree(entries: List[QueueEntry]) -> UrlTreeNode:
    """Group entry URLs by path segment; each URL's node carries its status and id.

    The root is named after the origin of the first entry. URLs on other
    origins hang under one directory per origin. A URL whose path is a
    prefix of another keeps its status on a directory node.
    """
    if not entries:
        return UrlTreeNode(name=EMPTY_TREE_NAME, path="/")

    root_origin = _origin(entries[0].url)
    root = UrlTreeNode(name=root_origin, path="/")
    foreign: Dict[str, UrlTreeNode] = {}

    for entry in entries:
        parts = urlsplit(entry.url)
        origin = _origin(entry.url)
        current = root
        prefix = ""
        if origin != root_origin:
            current = foreign.get(origin)
            if current is None:
                current = root.add_child(UrlTreeNode(name=origin, path=f"//{parts.netloc}"))
                foreign[origin] = current
            prefix = current.path

        segments = [segment for segment in parts.path.split("/") if segment]
        if parts.query:
            if segments:
                segments[-1] = f"{segments[-1]}?{parts.query}"
            else:
                segments = [f"?{parts.query}"]
        if not segments:
            _mark(current, entry)
            continue

        for index, segment in enumerate(segments):
            path = prefix + "/" + "/".join(segments[: index + 1])
            is_last = index == len(segments) - 1
            node = current.child(path)
            if node is None:
                node = current.add_child(
                    UrlTreeNode(
                        name=segment,
                        path=path,
                        type="file" if is_last else "directory",
                        children=None if is_last else [],
                    )
                )
            if is_last:
                _mark(node, entry)
            current = node
    return root
