import json
from dataclasses import dataclass

from diff_match_patch import diff_match_patch

_OPERATIONS = {
    diff_match_patch.DIFF_EQUAL: "equal",
    diff_match_patch.DIFF_DELETE: "delete",
    diff_match_patch.DIFF_INSERT: "insert",
}


@dataclass
class FieldDiff:
    field: str
    change: str  # "added", "removed" or "changed"
    old: object = None
    new: object = None


@dataclass
class TextDiff:
    changed: bool
    segments: list[dict]


def _is_absent(value) -> bool:
    return value is None or value == ""


def _canonical(value) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def compare_fields(old: dict | None, new: dict | None) -> list[FieldDiff]:
    """Field-level diff; empty strings and None count as absent."""
    old = old or {}
    new = new or {}
    diffs = []
    for key in sorted(set(old) | set(new)):
        a, b = old.get(key), new.get(key)
        if _is_absent(a) and _is_absent(b):
            continue
        if _is_absent(a):
            diffs.append(FieldDiff(field=key, change="added", new=b))
        elif _is_absent(b):
            diffs.append(FieldDiff(field=key, change="removed", old=a))
        elif _canonical(a) != _canonical(b):
            diffs.append(FieldDiff(field=key, change="changed", old=a, new=b))
    return diffs


def compare_text(old: str | None, new: str | None) -> TextDiff:
    old = old or ""
    new = new or ""
    if old == new:
        return TextDiff(changed=False, segments=[])

    dmp = diff_match_patch()
    diffs = dmp.diff_main(old, new)
    dmp.diff_cleanupSemantic(diffs)
    return TextDiff(
        changed=True,
        segments=[{"operation": _OPERATIONS[op], "text": text} for op, text in diffs],
    )
