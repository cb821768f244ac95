"""
Role-based menu filtering, shared by the API and the client NavigationService.

A role's allow-list is either the sentinel ``"all"`` or a list of entries.
An item is allowed when its id or href *contains* any entry: "assessment"
allows both "assessment-list" and "assessment-detail". Items are never
dropped from a built menu; disallowed items come back flagged disabled.
"""

from typing import Any, Iterable, Mapping

ALLOW_ALL = "all"


def is_item_allowed(item: Mapping[str, Any], allowed: str | Iterable[str] | None) -> bool:
    if allowed == ALLOW_ALL:
        return True
    if allowed is None or isinstance(allowed, str):
        return False
    item_id = str(item.get("id") or "")
    href = str(item.get("href") or "")
    return any(entry in item_id or entry in href for entry in allowed)


def annotate_menu(
    items: Iterable[Mapping[str, Any]],
    allowed: str | Iterable[str] | None,
    active_id: str | None = None,
) -> list[dict[str, Any]]:
    """Copy every item with `allowed`, `disabled` and `active` flags added."""
    allowed = list(allowed) if allowed is not None and not isinstance(allowed, str) else allowed
    menu = []
    for item in items:
        ok = is_item_allowed(item, allowed)
        menu.append({
            **item,
            "allowed": ok,
            "disabled": not ok,
            "active": active_id is not None and item.get("id") == active_id,
        })
    return menu
