"""
MODULE OVERVIEW:
Hierarchical query keys for the client-side cache.

WHAT IS HAPPENING HERE:
Every cached fetch is identified by a tuple of tokens that goes from general to
specific: `("groups",)` -> `("groups", "list")` -> `("groups", "list", user_id)`.
Invalidating a key invalidates everything underneath it, so a push message or a
reconciliation sweep can refresh a whole entity family with one short key.
"""
import json
from typing import Any, Sequence

QueryKey = tuple[Any, ...]


def normalize_query_key(query_key: Sequence[Any]) -> QueryKey:
    """Turn a list/tuple into a QueryKey, rejecting strings and empty keys."""
    if isinstance(query_key, (str, bytes)) or not isinstance(query_key, Sequence):
        raise ValueError(f"Query key must be a sequence of tokens, got {query_key!r}")
    if len(query_key) == 0:
        raise ValueError("Query key must contain at least one token")
    return tuple(query_key)


def query_key_hash(query_key: Sequence[Any]) -> str:
    """Stable string form of a key; dict tokens hash the same regardless of insertion order."""
    return json.dumps(list(query_key), sort_keys=True, default=str, separators=(",", ":"))


def matches_prefix(query_key: Sequence[Any], prefix: Sequence[Any]) -> bool:
    if len(prefix) > len(query_key):
        return False
    return all(
        query_key_hash([a]) == query_key_hash([b])
        for a, b in zip(query_key, prefix)
    )


class _Groups:
    all: QueryKey = ("groups",)

    def lists(self) -> QueryKey:
        return (*self.all, "list")

    def list(self, user_id: str) -> QueryKey:
        return (*self.lists(), user_id)

    def details(self) -> QueryKey:
        return (*self.all, "detail")

    def detail(self, group_id: str) -> QueryKey:
        return (*self.details(), group_id)

    def members(self, group_id: str) -> QueryKey:
        return (*self.all, "members", group_id)


class _Templates:
    all: QueryKey = ("templates",)

    def lists(self) -> QueryKey:
        return (*self.all, "list")

    def list(self, user_id: str) -> QueryKey:
        return (*self.lists(), user_id)

    def details(self) -> QueryKey:
        return (*self.all, "detail")

    def detail(self, template_id: str) -> QueryKey:
        return (*self.details(), template_id)


class _Assignments:
    all: QueryKey = ("assignments",)

    def lists(self) -> QueryKey:
        return (*self.all, "list")

    def list(self, user_id: str | None = None, group_id: str | None = None) -> QueryKey:
        filters = {k: v for k, v in {"userId": user_id, "groupId": group_id}.items() if v is not None}
        return (*self.lists(), filters)

    def instances(self, assignee_id: str | None = None, date: str | None = None,
                  start_date: str | None = None) -> QueryKey:
        filters = {
            k: v
            for k, v in {"assigneeId": assignee_id, "date": date, "startDate": start_date}.items()
            if v is not None
        }
        return (*self.all, "instances", filters)

    def progress(self, group_id: str, date: str) -> QueryKey:
        return (*self.all, "progress", group_id, date)


class _Profile:
    all: QueryKey = ("profile",)

    def current(self, user_id: str) -> QueryKey:
        return (*self.all, user_id)


class _Stickers:
    all: QueryKey = ("stickers",)

    def by_user(self, user_id: str) -> QueryKey:
        return (*self.all, user_id)


class _RecurringSchedules:
    all: QueryKey = ("recurringSchedules",)

    def lists(self) -> QueryKey:
        return (*self.all, "list")

    def list(self, user_id: str) -> QueryKey:
        return (*self.lists(), user_id)


class _CheckIns:
    all: QueryKey = ("checkIns",)

    def by_student(self, student_id: str) -> QueryKey:
        return (*self.all, student_id)


class QueryKeys:
    groups = _Groups()
    templates = _Templates()
    assignments = _Assignments()
    profile = _Profile()
    stickers = _Stickers()
    recurring_schedules = _RecurringSchedules()
    check_ins = _CheckIns()


query_keys = QueryKeys()
