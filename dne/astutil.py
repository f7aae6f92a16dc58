from __future__ import annotations

from typing import List, Tuple

from .ast import Node, iter_children, is_synthetic
from .span import Pos


def path_enclosing_interval(root: Node, start: Pos, end: Pos) -> Tuple[List[Node], bool]:
    """Return the nodes enclosing [start, end), innermost first, ending with `root`.

    The boolean is True when the innermost node spans exactly the interval.
    Synthesized nodes (no position) never enclose anything.
    """
    path: List[Node] = [root]
    node = root
    while True:
        for child in iter_children(node):
            if is_synthetic(child):
                continue
            if child.pos <= start and end <= child.end:
                path.append(child)
                node = child
                break
        else:
            break
    path.reverse()
    innermost = path[0]
    return path, innermost.pos == start and innermost.end == end


__all__ = ["path_enclosing_interval"]
