"""Durable per-user record of completed surveys."""
from typing import Iterable
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from rewards_backend.models.completion_record import CompletionRecord, build_storage_key

logger = logging.getLogger(__name__)

# Retries when another session wins the race for the same record
MAX_WRITE_ATTEMPTS = 5


def normalize_user_id(user_id) -> str | None:
    """Return the identity as a string, or None when it is absent."""
    if user_id is None:
        return None
    normalized = str(user_id).strip()
    return normalized or None


def normalize_survey_ids(survey_ids: Iterable) -> list[str]:
    """Drop blanks and duplicates while keeping first-seen order."""
    seen: dict[str, None] = {}
    for survey_id in survey_ids or []:
        if survey_id is None:
            continue
        value = str(survey_id).strip()
        if value:
            seen.setdefault(value, None)
    return list(seen)


class CompletionStore:
    """
    Persistent set of completed survey ids per identity.

    Storage faults never propagate: reads degrade to "nothing completed" and
    writes are rolled back and logged. Every write commits before returning so
    an immediately following read is consistent.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _safe_rollback(self, action: str) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as rollback_error:
            logger.error(f"Rollback after failed {action} also failed: {rollback_error}")

    async def _load_record(self, user_key: str) -> CompletionRecord | None:
        result = await self.db.execute(
            select(CompletionRecord)
            .where(CompletionRecord.storage_key == build_storage_key(user_key))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_completed(self, user_id) -> list[str]:
        """Snapshot of completed survey ids, in completion order."""
        user_key = normalize_user_id(user_id)
        if user_key is None:
            return []

        try:
            record = await self._load_record(user_key)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read completed surveys for {user_key=}: {e}")
            await self._safe_rollback("read completed surveys")
            return []

        if record is None:
            return []
        return normalize_survey_ids(record.survey_ids)

    async def is_completed(self, user_id, survey_id: str) -> bool:
        """Check whether the user has completed the survey."""
        if not survey_id:
            return False
        return str(survey_id) in await self.list_completed(user_id)

    async def _write(self, user_id, update, action: str) -> bool:
        """
        Apply ``update(current_ids) -> new_ids`` and commit. Returns True on success.

        The write is a compare-and-swap on the record version: when another
        session commits between our read and our commit, the insert hits the
        primary key or the update matches no row, and the whole step is retried
        against the fresh record.
        """
        user_key = normalize_user_id(user_id)
        if user_key is None:
            logger.warning(f"Skipping {action}: no user identity")
            return False

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            try:
                record = await self._load_record(user_key)
                current = normalize_survey_ids(record.survey_ids) if record else []
                updated = normalize_survey_ids(update(current))

                if updated == current:
                    return True

                if record is None:
                    record = CompletionRecord(storage_key=build_storage_key(user_key), survey_ids=updated)
                    self.db.add(record)
                else:
                    # Assign a new list so the JSON column is flagged dirty
                    record.survey_ids = updated

                await self.db.commit()
                return True
            except (IntegrityError, StaleDataError) as e:
                logger.info(f"Concurrent write on completions of {user_key=} ({action}, attempt {attempt}): {e}")
                await self._safe_rollback(action)
            except SQLAlchemyError as e:
                logger.error(f"Failed to {action} for {user_key=}: {e}")
                await self._safe_rollback(action)
                return False

        logger.error(f"Gave up trying to {action} for {user_key=} after {MAX_WRITE_ATTEMPTS} conflicting attempts")
        return False

    async def mark_completed(self, user_id, survey_id: str) -> bool:
        """Record a survey as completed. Idempotent."""
        return await self.mark_completed_many(user_id, [survey_id])

    async def mark_completed_many(self, user_id, survey_ids: Iterable[str]) -> bool:
        """Record several surveys as completed in one write. Idempotent."""
        new_ids = normalize_survey_ids(survey_ids)
        if not new_ids:
            return True

        stored = await self._write(user_id, lambda current: current + new_ids, "mark surveys completed")
        if stored:
            logger.info(f"Marked surveys {new_ids} completed for user {user_id}")
        return stored

    async def unmark_completed(self, user_id, survey_id: str) -> bool:
        """Remove a survey from the completed set. Idempotent."""
        return await self.unmark_completed_many(user_id, [survey_id])

    async def unmark_completed_many(self, user_id, survey_ids: Iterable[str]) -> bool:
        """Remove several surveys from the completed set in one write."""
        removed = set(normalize_survey_ids(survey_ids))
        if not removed:
            return True

        stored = await self._write(
            user_id,
            lambda current: [survey_id for survey_id in current if survey_id not in removed],
            "unmark surveys completed",
        )
        if stored:
            logger.info(f"Unmarked surveys {sorted(removed)} for user {user_id}")
        return stored

    async def clear_all(self, user_id) -> bool:
        """Forget every completion for the user."""
        stored = await self._write(user_id, lambda current: [], "clear completed surveys")
        if stored:
            logger.info(f"Cleared all completed surveys for user {user_id}")
        return stored

    async def stats(self, user_id) -> dict:
        """Completion statistics for diagnostics."""
        completed = await self.list_completed(user_id)
        return {"total": len(completed), "surveys": completed}
