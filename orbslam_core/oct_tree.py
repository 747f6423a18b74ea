"""Quad-tree distribution of keypoints so that they spread evenly over an image."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field, replace

from .descriptors import KeyPoint


@dataclass(eq=False)
class ExtractorNode:
    """A rectangular cell holding the keypoints that fall inside it."""

    ul: tuple[int, int]
    ur: tuple[int, int]
    bl: tuple[int, int]
    br: tuple[int, int]
    keys: list[KeyPoint] = field(default_factory=list)
    no_more: bool = False

    def divide(self) -> tuple["ExtractorNode", "ExtractorNode", "ExtractorNode", "ExtractorNode"]:
        """Split into four quadrants (upper-left, upper-right, lower-left, lower-right)."""
        half_x = math.ceil((self.ur[0] - self.ul[0]) / 2)
        half_y = math.ceil((self.br[1] - self.ul[1]) / 2)
        ux, uy = self.ul

        n1 = ExtractorNode(
            ul=self.ul,
            ur=(ux + half_x, uy),
            bl=(ux, uy + half_y),
            br=(ux + half_x, uy + half_y),
        )
        n2 = ExtractorNode(ul=n1.ur, ur=self.ur, bl=n1.br, br=(self.ur[0], uy + half_y))
        n3 = ExtractorNode(ul=n1.bl, ur=n1.br, bl=self.bl, br=(n1.br[0], self.bl[1]))
        n4 = ExtractorNode(ul=n3.ur, ur=n2.br, bl=n3.br, br=self.br)

        split_x, split_y = n1.ur[0], n1.br[1]
        for kp in self.keys:
            if kp.x < split_x:
                (n1 if kp.y < split_y else n3).keys.append(kp)
            elif kp.y < split_y:
                n2.keys.append(kp)
            else:
                n4.keys.append(kp)

        children = (n1, n2, n3, n4)
        for child in children:
            if len(child.keys) == 1:
                child.no_more = True
        return children


def _push_children(nodes: deque, children, expandable: list) -> int:
    """Put non-empty children at the front; record those that can still be split."""
    added = 0
    for child in children:
        if child.keys:
            nodes.appendleft(child)
            if len(child.keys) > 1:
                expandable.append((len(child.keys), child))
                added += 1
    return added


def distribute_oct_tree(keys, min_x, max_x, min_y, max_y, n) -> list[KeyPoint]:
    """Keep the strongest keypoint of each cell after splitting until about ``n`` cells.

    Keypoint coordinates are relative to ``(min_x, min_y)``.
    """
    width = max_x - min_x
    height = max_y - min_y
    if width <= 0 or height <= 0:
        raise ValueError("region must have positive width and height")
    n_ini = math.floor(width / height + 0.5)
    if n_ini < 1:
        raise ValueError("region is too narrow for its height")
    h_x = width / n_ini

    initial = [
        ExtractorNode(
            ul=(int(h_x * i), 0),
            ur=(int(h_x * (i + 1)), 0),
            bl=(int(h_x * i), height),
            br=(int(h_x * (i + 1)), height),
        )
        for i in range(n_ini)
    ]
    for kp in keys:
        index = min(max(int(kp.x / h_x), 0), n_ini - 1)
        initial[index].keys.append(kp)

    nodes: deque[ExtractorNode] = deque()
    for node in initial:
        if not node.keys:
            continue
        if len(node.keys) == 1:
            node.no_more = True
        nodes.append(node)

    finished = False
    while not finished:
        prev_size = len(nodes)
        expandable: list = []
        front: deque[ExtractorNode] = deque()
        tail: list[ExtractorNode] = []
        to_expand = 0

        for node in nodes:
            if node.no_more:
                tail.append(node)
            else:
                to_expand += _push_children(front, node.divide(), expandable)
        nodes = front
        nodes.extend(tail)

        if len(nodes) >= n or len(nodes) == prev_size:
            finished = True
        elif len(nodes) + to_expand * 3 > n:
            while not finished:
                prev_size = len(nodes)
                previous = sorted(expandable, key=lambda pair: pair[0])
                expandable = []
                for _, node in reversed(previous):
                    _push_children(nodes, node.divide(), expandable)
                    nodes.remove(node)
                    if len(nodes) >= n:
                        break
                if len(nodes) >= n or len(nodes) == prev_size:
                    finished = True

    result = []
    for node in nodes:
        best = node.keys[0]
        for kp in node.keys[1:]:
            if kp.response > best.response:
                best = kp
        result.append(replace(best))
    return result