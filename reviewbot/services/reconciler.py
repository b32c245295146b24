"""Idempotent delta between desired annotations and posted comments."""

from __future__ import annotations

from typing import Iterable, List, Set, Tuple

from reviewbot.models.review import Annotation, ExistingComment

CommentKey = Tuple[str, int | None, str]


def comment_key(path: str, position: int | None, body: str) -> CommentKey:
    return path, position, body.strip()


def reconcile(desired: Iterable[Annotation], existing: Iterable[ExistingComment]) -> List[Annotation]:
    """Return the annotations not yet present on the pull request.

    Two comments are the same when path, diff position and rendered body all
    match. Order of ``desired`` is kept and repeats within it are dropped.
    Existing comments are never removed.
    """

    seen: Set[CommentKey] = {comment_key(c.path, c.position, c.body) for c in existing}
    missing: List[Annotation] = []
    for annotation in desired:
        key = comment_key(annotation.path, annotation.position, annotation.body)
        if key in seen:
            continue
        seen.add(key)
        missing.append(annotation)
    return missing
