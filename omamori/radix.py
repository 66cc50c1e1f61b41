"""A compressed prefix tree mapping string keys to string data."""

from __future__ import annotations


class _Node:
    __slots__ = ("children", "end", "data")

    def __init__(self) -> None:
        self.children: dict[str, _Node] = {}
        self.end = False
        self.data = ""


def _common_prefix_length(a: str, b: str) -> int:
    length = 0
    for x, y in zip(a, b):
        if x != y:
            break
        length += 1
    return length


class RadixTree:
    """Radix tree with exact-match lookup, deletion and enumeration."""

    def __init__(self) -> None:
        self._root = _Node()

    def insert(self, word: str, data: str) -> None:
        """Store ``word`` with ``data``, replacing any existing data."""
        node = self._root
        while word:
            for key, child in node.children.items():
                shared = _common_prefix_length(key, word)
                if not shared:
                    continue
                if shared < len(key):
                    middle = _Node()
                    middle.children[key[shared:]] = child
                    del node.children[key]
                    node.children[key[:shared]] = middle
                    node = middle
                else:
                    node = child
                word = word[shared:]
                break
            else:
                leaf = _Node()
                node.children[word] = leaf
                node = leaf
                word = ""
        node.end = True
        node.data = data

    def _find_child(self, node: _Node, rest: str) -> tuple[str, _Node] | None:
        for key, child in node.children.items():
            if rest.startswith(key):
                return key, child
        return None

    def search(self, word: str) -> bool:
        """Return True if ``word`` was inserted as a whole key."""
        node = self._root
        while word:
            found = self._find_child(node, word)
            if found is None:
                return False
            key, node = found
            word = word[len(key):]
        return node.end

    def delete(self, word: str) -> bool:
        """Remove ``word``; return True if it was present."""
        path: list[tuple[_Node, str, _Node]] = []
        node = self._root
        rest = word
        while rest:
            found = self._find_child(node, rest)
            if found is None:
                return False
            key, child = found
            path.append((node, key, child))
            node = child
            rest = rest[len(key):]

        if not node.end:
            return False
        node.end = False
        node.data = ""

        for parent, key, child in reversed(path):
            if child.end:
                break
            if not child.children:
                del parent.children[key]
                continue
            if len(child.children) == 1:
                (grand_key, grandchild), = child.children.items()
                del parent.children[key]
                parent.children[key + grand_key] = grandchild
            break
        return True

    def items(self) -> dict[str, str]:
        """Return every stored key with its data."""
        result: dict[str, str] = {}
        stack: list[tuple[_Node, str]] = [(self._root, "")]
        while stack:
            node, prefix = stack.pop()
            if node.end:
                result[prefix] = node.data
            for edge, child in node.children.items():
                stack.append((child, prefix + edge))
        return result