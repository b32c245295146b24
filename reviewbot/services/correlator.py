"""Translate analyzer findings into diff-positioned annotations."""

from __future__ import annotations

from collections import Counter
from typing import AbstractSet, Iterable, List, Mapping, Sequence, Tuple

from reviewbot.models.review import Annotation, Finding, LineRange
from reviewbot.services.patch import build_position_map, parse_range


def _summary_annotation(
    path: str, findings: Sequence[Finding], line_range: LineRange, position_map: Mapping[int, int]
) -> Annotation | None:
    in_scope = [line for line in position_map if line in line_range]
    if not in_scope:
        return None
    first_line = min(in_scope)
    counts = Counter(finding.severity for finding in findings)
    message = (
        f"Too many problems to annotate individually: {len(findings)} findings omitted "
        f"({counts.get('error', 0)} errors, {counts.get('warning', 0)} warnings)."
    )
    return Annotation(
        path=path,
        position=position_map[first_line],
        rule=None,
        severity="error" if counts.get("error") else "warning",
        message=message,
        line=first_line,
    )


def correlate(
    path: str,
    findings: Sequence[Finding],
    line_range: LineRange,
    position_map: Mapping[int, int],
    excluded_rules: AbstractSet[str] = frozenset(),
    max_findings: int | None = None,
) -> List[Annotation]:
    """Keep the findings that sit on added lines of the in-scope hunk.

    A finding survives when its line lies within ``line_range`` (inclusive),
    its rule is not excluded, and the line was added by the patch. Reported
    order is preserved. When ``max_findings`` is exceeded the file collapses
    to a single summary annotation.
    """

    if line_range.is_empty or not position_map:
        return []

    if max_findings is not None and len(findings) > max_findings:
        summary = _summary_annotation(path, findings, line_range, position_map)
        return [summary] if summary else []

    annotations: List[Annotation] = []
    for finding in findings:
        if finding.line not in line_range:
            continue
        if finding.rule is not None and finding.rule in excluded_rules:
            continue
        position = position_map.get(finding.line)
        if position is None:
            continue
        annotations.append(
            Annotation(
                path=path,
                position=position,
                rule=finding.rule,
                severity=finding.severity,
                message=finding.message,
                line=finding.line,
            )
        )
    return annotations


def correlate_files(
    files: Iterable[Tuple[str, str | None, Sequence[Finding]]],
    *,
    excluded_rules: AbstractSet[str] = frozenset(),
    max_findings: int | None = None,
) -> List[Annotation]:
    """Correlate ``(path, patch, findings)`` triples, keeping file order."""

    annotations: List[Annotation] = []
    for path, patch, findings in files:
        annotations.extend(
            correlate(
                path,
                findings,
                parse_range(patch),
                build_position_map(patch),
                excluded_rules=excluded_rules,
                max_findings=max_findings,
            )
        )
    return annotations
