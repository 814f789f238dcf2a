from __future__ import annotations

from typing import Iterable, Optional

from .errors import TransformUnavailable
from .interfaces import TransformProvider
from .odom_types import RigidTransform
from .transforms import invert


class StaticTransformProvider(TransformProvider):
    """
    Lookup table of fixed transforms, keyed by (target_frame, source_frame).

    Answers direct entries, their inverses, and same-frame identity. It does
    not chain entries together.
    """

    def __init__(self, entries: Optional[Iterable[tuple[str, str, RigidTransform]]] = None):
        self._table: dict[tuple[str, str], RigidTransform] = {}
        for target, source, transform in entries or ():
            self.set_transform(target, source, transform)

    def set_transform(self, target_frame: str, source_frame: str, transform: RigidTransform) -> None:
        self._table[(target_frame, source_frame)] = transform

    def remove_transform(self, target_frame: str, source_frame: str) -> None:
        self._table.pop((target_frame, source_frame), None)

    def lookup_transform(self, target_frame: str, source_frame: str) -> RigidTransform:
        if not target_frame or not source_frame:
            raise TransformUnavailable(target_frame, source_frame, "empty frame id")
        if target_frame == source_frame:
            return RigidTransform.identity()

        direct = self._table.get((target_frame, source_frame))
        if direct is not None:
            return direct
        reverse = self._table.get((source_frame, target_frame))
        if reverse is not None:
            return invert(reverse)
        raise TransformUnavailable(target_frame, source_frame)

    def __len__(self) -> int:
        return len(self._table)
