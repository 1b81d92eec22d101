"""List-view plumbing shared by the media, people, todo and tracking tables.

A filter state is ``{"groups": [{"operator": "and"|"or", "filters": [...]}, ...]}``
where each filter is ``{"property", "property_type", "operator", "value"}``.
A row passes when any group matches; an empty state passes everything.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable

from lifeapp_dashboard.formatting import tier_name

NO_VALUE_OPERATORS = {
    "is_empty",
    "is_not_empty",
    "past_week",
    "past_month",
    "past_year",
    "next_week",
    "next_month",
    "next_year",
}
MEDIA_STATUS_ORDER = ["To-do", "Pause", "In Progress", "Done", "DNF"]
TIER_ORDER = ["Tier Me", "Tier L", "Tier CR", "Tier F", "Tier MU", "Tier SA", "Tier A"]
TODO_STATUS_ORDER = ["To-Do", "In progress", "Done"]
DATE_RANGE_TABS = ("today", "week", "month", "quarter", "year", "all")
TODO_TABS = ("today", "upcoming", "overdue", "done", "all")


def page_value(page: dict, key: str, prop_type: str):
    """Read a Notion page property the way the filter engine compares it."""
    if prop_type == "created_time":
        return page.get("created_time") or ""
    if prop_type == "last_edited_time":
        return page.get("last_edited_time") or ""
    prop = (page.get("properties") or {}).get(key)
    if not prop:
        return None
    if prop_type in ("title", "rich_text"):
        parts = prop.get(prop_type) or []
        return parts[0].get("plain_text", "") if parts else ""
    if prop_type == "number":
        return prop.get("number")
    if prop_type in ("select", "status"):
        return (prop.get(prop_type) or {}).get("name", "")
    if prop_type == "multi_select":
        return [item.get("name") for item in prop.get("multi_select") or []]
    if prop_type == "date":
        return (prop.get("date") or {}).get("start", "")
    if prop_type == "checkbox":
        return bool(prop.get("checkbox"))
    return None


def _to_datetime(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _shift_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year, month = moment.year + month_index // 12, month_index % 12 + 1
    day = min(moment.day, _days_in_month(year, month))
    return moment.replace(year=year, month=month, day=day)


def _days_in_month(year: int, month: int) -> int:
    following = date(year + (month == 12), month % 12 + 1, 1)
    return (following - timedelta(days=1)).day


def _lower(value) -> str:
    return str(value).lower()


def _compare_dates(page_value, filter_value, op: Callable[[datetime, datetime], bool]) -> bool:
    left, right = _to_datetime(page_value), _to_datetime(filter_value)
    if left is None or right is None:
        return False
    return op(left, right)


def _relative(page_value, now: datetime, operator: str) -> bool:
    moment = _to_datetime(page_value)
    if moment is None:
        return False
    direction = -1 if operator.startswith("past_") else 1
    unit = operator.split("_", 1)[1]
    if unit == "week":
        bound = now + timedelta(days=7 * direction)
    else:
        bound = _shift_months(now, direction * (1 if unit == "month" else 12))
    return moment >= bound if direction < 0 else moment <= bound


def _is_empty(value) -> bool:
    # Unchecked checkboxes and zero count as empty.
    if isinstance(value, list):
        return len(value) == 0
    return not value or (isinstance(value, str) and not value.strip())


def matches(value, condition: dict, now: datetime | None = None) -> bool:
    """Evaluate one filter condition against an already-extracted value."""
    operator = condition.get("operator")
    target = condition.get("value")
    is_list = isinstance(value, list)

    if operator == "is_empty":
        return _is_empty(value)
    if operator == "is_not_empty":
        return not _is_empty(value)
    if value is None:
        return operator in ("not_equals", "does_not_contain")

    if operator == "equals":
        if is_list:
            return target in value
        if isinstance(value, bool) or isinstance(value, (int, float)):
            return value == target
        return str(value) == str(target)
    if operator == "not_equals":
        if is_list:
            return target not in value
        if isinstance(value, bool) or isinstance(value, (int, float)):
            return value != target
        return str(value) != str(target)
    if operator in ("contains", "does_not_contain"):
        if is_list:
            wanted = target if isinstance(target, list) else [target]
            found = any(item in value for item in wanted)
        else:
            found = _lower(target) in _lower(value)
        return found if operator == "contains" else not found
    if operator == "starts_with":
        return not is_list and _lower(value).startswith(_lower(target))
    if operator == "ends_with":
        return not is_list and _lower(value).endswith(_lower(target))
    if operator in ("greater_than", "less_than", "greater_than_or_equal_to", "less_than_or_equal_to"):
        try:
            left, right = float(value), float(target)
        except (TypeError, ValueError):
            return False
        return {
            "greater_than": left > right,
            "less_than": left < right,
            "greater_than_or_equal_to": left >= right,
            "less_than_or_equal_to": left <= right,
        }[operator]
    if operator == "before":
        return _compare_dates(value, target, lambda a, b: a < b)
    if operator == "after":
        return _compare_dates(value, target, lambda a, b: a > b)
    if operator == "on_or_before":
        return _compare_dates(value, target, lambda a, b: a <= b)
    if operator == "on_or_after":
        return _compare_dates(value, target, lambda a, b: a >= b)
    if operator in ("past_week", "past_month", "past_year", "next_week", "next_month", "next_year"):
        return _relative(value, now or datetime.now(timezone.utc), operator)
    return False


def _group_matches(getter: Callable[[dict], object], group: dict, now: datetime | None) -> bool:
    conditions = group.get("filters") or []
    if not conditions:
        return True
    results = (matches(getter(condition), condition, now) for condition in conditions)
    return all(results) if group.get("operator", "and") == "and" else any(results)


def apply_filters(items: Iterable[dict], state: dict | None, now: datetime | None = None) -> list[dict]:
    """Filter flat rows, reading ``row[condition["property"]]``."""
    items = list(items)
    groups = (state or {}).get("groups") or []
    if not groups:
        return items
    return [
        item
        for item in items
        if any(_group_matches(lambda c, item=item: item.get(c.get("property")), group, now) for group in groups)
    ]


def filter_pages(pages: Iterable[dict], state: dict | None, now: datetime | None = None) -> list[dict]:
    """Filter raw Notion pages, reading each property by its declared type."""
    pages = list(pages)
    groups = (state or {}).get("groups") or []
    if not groups:
        return pages
    return [
        page
        for page in pages
        if any(
            _group_matches(
                lambda c, page=page: page_value(page, c.get("property"), c.get("property_type") or ""),
                group,
                now,
            )
            for group in groups
        )
    ]


def active_filter_count(state: dict | None) -> int:
    return sum(len(group.get("filters") or []) for group in (state or {}).get("groups") or [])


def needs_value(operator: str) -> bool:
    return operator not in NO_VALUE_OPERATORS


def search(items: Iterable[dict], query: str | None, fields: Iterable[str] | None = None) -> list[dict]:
    items = list(items)
    needle = (query or "").strip().lower()
    if not needle:
        return items
    fields = list(fields) if fields else None

    def text(item: dict) -> str:
        values = [item.get(field) for field in fields] if fields else list(item.values())
        parts = []
        for value in values:
            if isinstance(value, (list, tuple)):
                parts.extend(str(v) for v in value if v is not None)
            elif value is not None:
                parts.append(str(value))
        return " ".join(parts).lower()

    return [item for item in items if needle in text(item)]


def filter_by(items: Iterable[dict], field: str, value) -> list[dict]:
    """Keep rows whose ``field`` equals ``value``; ``None`` or ``"all"`` keeps everything."""
    items = list(items)
    if value in (None, "", "all"):
        return items
    return [item for item in items if item.get(field) == value]


def sort_items(items: Iterable[dict], key: str, direction: str | None = "asc") -> list[dict]:
    """Sort by ``key``; missing values always sort last regardless of direction."""
    items = list(items)
    if not key or direction not in ("asc", "desc"):
        return items
    present = [item for item in items if item.get(key) is not None]
    missing = [item for item in items if item.get(key) is None]

    def sort_key(item):
        value = item[key]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return (0, value, "")
        return (1, 0, str(value).lower())

    present.sort(key=sort_key, reverse=direction == "desc")
    return present + missing


def next_sort_direction(current_key: str, current_direction: str | None, key: str) -> str | None:
    if current_key != key:
        return "asc"
    return {"asc": "desc", "desc": None}.get(current_direction, "asc")


def _ordered(groups: dict, order: list[str]) -> dict:
    rank = {name: index for index, name in enumerate(order)}
    keys = sorted(groups, key=lambda name: (rank.get(name, len(order)), name.lower()))
    return {key: groups[key] for key in keys}


def group_by(items: Iterable[dict], key: Callable[[dict], str], order: list[str] | None = None) -> dict:
    groups: dict[str, list[dict]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return _ordered(groups, order or [])


def _media_status(item: dict) -> str:
    status = item.get("status") or "To-do"
    if status == "Not started":
        return "To-do"
    if status == "In progress":
        return "In Progress"
    return status


def group_media_by_status(items: Iterable[dict]) -> dict:
    return group_by(items, _media_status, MEDIA_STATUS_ORDER)


def group_people_by_tier(items: Iterable[dict]) -> dict:
    return group_by(items, lambda person: tier_name(person.get("tier")) or "Other", TIER_ORDER)


def group_todos_by_status(items: Iterable[dict]) -> dict:
    return group_by(items, lambda todo: todo.get("status") or "To-Do", TODO_STATUS_ORDER)


def date_range_bounds(tab: str, today: date | None = None) -> tuple[date | None, date | None]:
    """Inclusive ``(start, end)`` for a date-range tab; ``all`` is unbounded."""
    today = today or date.today()
    if tab == "today":
        return today, today
    if tab == "week":
        return today - timedelta(days=today.weekday()), today
    if tab == "month":
        return today.replace(day=1), today
    if tab == "quarter":
        return date(today.year, 3 * ((today.month - 1) // 3) + 1, 1), today
    if tab == "year":
        return date(today.year, 1, 1), today
    if tab == "all":
        return None, None
    raise ValueError(f"Unknown date range tab: {tab}")


def in_date_range(items: Iterable[dict], field: str, tab: str, today: date | None = None) -> list[dict]:
    start, end = date_range_bounds(tab, today)
    items = list(items)
    if start is None and end is None:
        return items
    kept = []
    for item in items:
        moment = _to_datetime(item.get(field))
        if moment is None:
            continue
        day = moment.date()
        if start <= day <= end:
            kept.append(item)
    return kept


def _do_date(todo: dict) -> date | None:
    moment = _to_datetime(todo.get("do_date"))
    return moment.date() if moment else None


def todo_in_tab(todo: dict, tab: str, today: date | None = None) -> bool:
    today = today or date.today()
    if tab == "done":
        return todo.get("status") == "Done"
    if tab == "all":
        return True
    do_date = _do_date(todo)
    if do_date is None:
        return False
    if tab == "today":
        return do_date == today
    if tab == "upcoming":
        return do_date > today
    if tab == "overdue":
        return do_date < today and todo.get("status") != "Done"
    raise ValueError(f"Unknown todo tab: {tab}")


def filter_todos(
    todos: Iterable[dict],
    tab: str = "all",
    status: str | None = "all",
    priority: str | None = "all",
    query: str | None = None,
    today: date | None = None,
) -> list[dict]:
    needle = (query or "").strip().lower()
    kept = []
    for todo in todos:
        if not todo_in_tab(todo, tab, today):
            continue
        if status not in (None, "all") and todo.get("status") != status:
            continue
        if priority not in (None, "all") and todo.get("priority") != priority:
            continue
        if needle:
            in_title = needle in (todo.get("title") or "").lower()
            in_tags = any(needle in str(tag).lower() for tag in todo.get("mega_tags") or [])
            if not (in_title or in_tags):
                continue
        kept.append(todo)
    return kept
