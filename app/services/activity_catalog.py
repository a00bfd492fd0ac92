"""Filtering and search over stored activities."""

from typing import Iterable, List

from app.models.activity import Activity, ActivityFilters

ALL = "all"


def _is_any(value: object) -> bool:
    return value is None or value == "" or value == ALL


def matches(activity: Activity, filters: ActivityFilters) -> bool:
    """Return True when ``activity`` satisfies every active filter."""
    if not _is_any(filters.subject) and activity.subject != filters.subject:
        return False
    if filters.pillar is not None and activity.pillar != filters.pillar:
        return False
    if filters.level is not None and activity.level != filters.level:
        return False

    if filters.topic:
        if filters.topic.lower() not in activity.topic.lower():
            return False

    if filters.query:
        query = filters.query.lower()
        if query not in activity.title.lower() and query not in activity.description.lower():
            return False

    return True


def filter_activities(activities: Iterable[Activity], filters: ActivityFilters) -> List[Activity]:
    """Activities matching ``filters``, in their original order."""
    return [activity for activity in activities if matches(activity, filters)]


def available_subjects(activities: Iterable[Activity]) -> List[str]:
    """Distinct subjects in first-seen order."""
    seen: List[str] = []
    for activity in activities:
        if activity.subject not in seen:
            seen.append(activity.subject)
    return seen
