"""Viewstamps: (view, operation number) pairs ordered view first."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["Viewstamp", "viewstamp_compare"]


@dataclass(frozen=True, order=True)
class Viewstamp:
    """A position in the replicated log, ordered by view then opnum."""

    view: int = 0
    opnum: int = 0

    def __str__(self) -> str:
        return f"<{self.view},{self.opnum}>"


def viewstamp_compare(a: Viewstamp, b: Viewstamp) -> int:
    """Return -1, 0 or 1 as ``a`` is before, equal to or after ``b``."""
    if a.view != b.view:
        return -1 if a.view < b.view else 1
    if a.opnum != b.opnum:
        return -1 if a.opnum < b.opnum else 1
    return 0