"""Cross-language equivalence groups of surveys.

Surveys are often published once per language with the same questions. A
group ties those variants together: completing any member hides the others.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from rewards_backend.services.completion_store import CompletionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EquivalenceGroup:
    """Immutable group definition."""
    group_id: str
    name: str
    member_survey_ids: tuple[str, ...]
    description: str = ""


class EquivalenceGroupRegistry:
    """Lookup of survey -> group and group -> members, backed by a CompletionStore."""

    def __init__(self, groups: Iterable[EquivalenceGroup], store: Optional[CompletionStore] = None):
        self.store = store
        self._groups: dict[str, EquivalenceGroup] = {}
        self._group_by_survey: dict[str, str] = {}

        for group in groups:
            if group.group_id in self._groups:
                raise ValueError(f"Duplicate survey group id: {group.group_id}")
            for survey_id in group.member_survey_ids:
                owner = self._group_by_survey.get(survey_id)
                if owner is not None and owner != group.group_id:
                    raise ValueError(
                        f"Survey {survey_id} belongs to both '{owner}' and '{group.group_id}'"
                    )
                self._group_by_survey[survey_id] = group.group_id
            self._groups[group.group_id] = group

    @classmethod
    def from_config(
        cls, config: Mapping[str, Mapping], store: Optional[CompletionStore] = None
    ) -> "EquivalenceGroupRegistry":
        """Build a registry from the ``survey_groups`` setting."""
        groups = []
        for group_id, definition in (config or {}).items():
            members = definition.get("surveys") or []
            if isinstance(members, str):
                raise ValueError(f"Survey group '{group_id}' must list surveys as a sequence")
            groups.append(
                EquivalenceGroup(
                    group_id=str(group_id),
                    name=str(definition.get("name") or group_id),
                    # Keep order, drop duplicates within a group
                    member_survey_ids=tuple(dict.fromkeys(str(member) for member in members)),
                    description=str(definition.get("description") or ""),
                )
            )
        return cls(groups, store=store)

    def with_store(self, store: CompletionStore) -> "EquivalenceGroupRegistry":
        """Same groups, bound to another store (one per request session)."""
        return EquivalenceGroupRegistry(self._groups.values(), store=store)

    def _require_store(self) -> CompletionStore:
        if self.store is None:
            raise RuntimeError("EquivalenceGroupRegistry has no CompletionStore bound")
        return self.store

    @property
    def groups(self) -> tuple[EquivalenceGroup, ...]:
        return tuple(self._groups.values())

    def group_of(self, survey_id: str) -> Optional[str]:
        """Get the group a survey belongs to, if any."""
        if survey_id is None:
            return None
        return self._group_by_survey.get(str(survey_id))

    def members_of(self, group_id: str) -> tuple[str, ...]:
        """Ordered member survey ids of a group (empty for unknown groups)."""
        group = self._groups.get(group_id)
        return group.member_survey_ids if group else ()

    def hidden_by_group(self, survey_id: str, completed_ids: Iterable[str]) -> bool:
        """Group check against an already loaded completion snapshot."""
        group_id = self.group_of(survey_id)
        if group_id is None:
            return False
        completed = set(completed_ids)
        return any(member in completed for member in self.members_of(group_id))

    async def is_group_completed(self, user_id, group_id: str) -> bool:
        """True iff any member of the group is completed by the user."""
        members = self.members_of(group_id)
        if not members:
            return False
        completed = set(await self._require_store().list_completed(user_id))
        return any(member in completed for member in members)

    async def should_hide_due_to_group(self, user_id, survey_id: str) -> bool:
        """True when the survey's group has been completed through any member."""
        group_id = self.group_of(survey_id)
        if group_id is None:
            return False
        return await self.is_group_completed(user_id, group_id)

    async def mark_group_completed(self, user_id, group_id: str) -> bool:
        """Mark every member of the group as completed."""
        members = self.members_of(group_id)
        if not members:
            logger.warning(f"Cannot mark unknown or empty survey group {group_id}")
            return False
        stored = await self._require_store().mark_completed_many(user_id, members)
        if stored:
            logger.info(f"Group {group_id} marked completed for user {user_id} ({len(members)} surveys)")
        return stored

    async def unmark_group_completed(self, user_id, group_id: str) -> bool:
        """Remove every member of the group from the completed set."""
        members = self.members_of(group_id)
        if not members:
            logger.warning(f"Cannot unmark unknown or empty survey group {group_id}")
            return False
        stored = await self._require_store().unmark_completed_many(user_id, members)
        if stored:
            logger.info(f"Group {group_id} unmarked for user {user_id} ({len(members)} surveys)")
        return stored

    async def group_stats(self, user_id) -> list[dict]:
        """Per-group totals and completed members for diagnostics."""
        completed = set(await self._require_store().list_completed(user_id))
        stats = []
        for group in self._groups.values():
            completed_in_group = [survey_id for survey_id in group.member_survey_ids if survey_id in completed]
            stats.append({
                "group_id": group.group_id,
                "name": group.name,
                "total": len(group.member_survey_ids),
                "completed": len(completed_in_group),
                "surveys": list(group.member_survey_ids),
                "completed_surveys": completed_in_group,
                "is_completed": bool(completed_in_group),
            })
        return stats
