# health_explorer/services/repo.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from health_explorer.db.models import (
    ActionItemRow,
    InsightRow,
    MessageRow,
    ProfileRow,
    SessionRow,
    utcnow,
)
from health_explorer.schemas.chat import (
    DEFAULT_TITLE,
    HEALTH_CATEGORIES,
    ActionItem,
    ActionItemDraft,
    ChatSession,
    HealthInsight,
    InsightDraft,
    Message,
    ReasoningStep,
)
from health_explorer.schemas.profile import Medication, PatientProfile

logger = logging.getLogger(__name__)


# ---------------------------
# Row -> schema conversion
# ---------------------------

def _to_profile(row: ProfileRow) -> PatientProfile:
    return PatientProfile(
        id=row.id,
        name=row.name or "",
        age=row.age or 0,
        sex=row.sex if row.sex in ("male", "female", "other") else "other",
        medications=[Medication(**m) for m in row.medications or []],
        conditions=list(row.conditions or []),
        allergies=list(row.allergies or []),
    )


def _to_message(row: MessageRow) -> Message:
    reasoning = [ReasoningStep(**r) for r in row.reasoning] if row.reasoning else None
    return Message(
        id=row.id,
        role=row.role,
        content=row.content,
        reasoning=reasoning,
        timestamp=row.created_at,
        client_id=row.client_id,
    )


def _to_action_item(row: ActionItemRow) -> ActionItem:
    return ActionItem(
        id=row.id,
        task=row.task,
        why=row.why or "",
        urgency="urgent" if row.urgency == "urgent" else "routine",
        completed=row.completed,
        session_id=row.session_id,
        created_at=row.created_at,
    )


def _to_insight(row: InsightRow) -> HealthInsight:
    return HealthInsight(
        id=row.id,
        category=row.category,
        content=row.content,
        source_session_id=row.source_session_id or "",
        created_at=row.created_at,
    )


class Repo:
    """
    Conversation/insight store scoped per user, with safe transactions.

    Usage patterns:
      - Simple read/write (auto session/commit):
          await repo.append_message(session_id, message)

      - Composed writes with atomicity:
          async with repo.transaction() as s:
              await repo.append_message(..., session=s)
              await repo.append_action_items(..., session=s)
              # any error -> full rollback
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    # ---------------------------
    # Transactions
    # ---------------------------
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session with an active transaction. Rollbacks on exception."""
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def _scope(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        """Reuse the caller's session, or open one that commits on success."""
        if session is not None:
            yield session
            return

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # ---------------------------
    # Profile
    # ---------------------------
    async def get_profile(
        self, user_id: str, *, session: Optional[AsyncSession] = None
    ) -> Optional[PatientProfile]:
        async with self._scope(session) as s:
            row = await s.get(ProfileRow, user_id)
            return _to_profile(row) if row is not None else None

    async def save_profile(
        self, user_id: str, profile: PatientProfile, *, session: Optional[AsyncSession] = None
    ) -> PatientProfile:
        """Replace the user's profile wholesale."""
        async with self._scope(session) as s:
            row = await s.get(ProfileRow, user_id)
            if row is None:
                row = ProfileRow(id=user_id)
                s.add(row)
            row.name = profile.name
            row.age = profile.age
            row.sex = profile.sex
            row.medications = [m.model_dump() for m in profile.medications]
            row.conditions = list(profile.conditions)
            row.allergies = list(profile.allergies)
            row.updated_at = utcnow()
            await s.flush()
            return _to_profile(row)

    # ---------------------------
    # Sessions
    # ---------------------------
    async def _load_session(self, s: AsyncSession, row: SessionRow) -> ChatSession:
        msgs = await s.execute(
            select(MessageRow)
            .where(MessageRow.session_id == row.id)
            .order_by(MessageRow.position.asc(), MessageRow.created_at.asc())
        )
        items = await s.execute(
            select(ActionItemRow)
            .where(ActionItemRow.session_id == row.id)
            .order_by(ActionItemRow.position.asc(), ActionItemRow.created_at.asc())
        )
        return ChatSession(
            id=row.id,
            title=row.title,
            created_at=row.created_at,
            updated_at=row.updated_at,
            messages=[_to_message(m) for m in msgs.scalars().all()],
            action_items=[_to_action_item(a) for a in items.scalars().all()],
            question_count=row.question_count,
            is_summary_mode=row.is_summary_mode,
            has_red_flag=row.has_red_flag,
        )

    async def list_sessions(
        self, user_id: str, *, session: Optional[AsyncSession] = None
    ) -> list[ChatSession]:
        """Return the user's sessions, most recently updated first."""
        async with self._scope(session) as s:
            res = await s.execute(
                select(SessionRow)
                .where(SessionRow.user_id == user_id)
                .order_by(SessionRow.updated_at.desc())
            )
            return [await self._load_session(s, row) for row in res.scalars().all()]

    async def get_session(
        self, user_id: str, session_id: str, *, session: Optional[AsyncSession] = None
    ) -> Optional[ChatSession]:
        async with self._scope(session) as s:
            row = await s.get(SessionRow, session_id)
            if row is None or row.user_id != user_id:
                return None
            return await self._load_session(s, row)

    async def create_session(
        self, user_id: str, title: str, *, session: Optional[AsyncSession] = None
    ) -> ChatSession:
        async with self._scope(session) as s:
            row = SessionRow(user_id=user_id, title=title)
            s.add(row)
            await s.flush()
            return await self._load_session(s, row)

    async def rename_default_session(
        self, session_id: str, title: str, *, session: Optional[AsyncSession] = None
    ) -> bool:
        """Replace the placeholder title; sessions already titled keep theirs."""
        async with self._scope(session) as s:
            row = await s.get(SessionRow, session_id)
            if row is None or row.title != DEFAULT_TITLE or not title:
                return False
            row.title = title
            await s.flush()
            return True

    async def update_session_fields(
        self,
        session_id: str,
        *,
        question_count: Optional[int] = None,
        is_summary_mode: Optional[bool] = None,
        has_red_flag: Optional[bool] = None,
        session: Optional[AsyncSession] = None,
    ) -> None:
        async with self._scope(session) as s:
            row = await s.get(SessionRow, session_id)
            if row is None:
                raise LookupError(f"chat session {session_id} does not exist")
            if question_count is not None:
                if question_count < row.question_count:
                    raise ValueError(
                        f"question_count may only increase ({row.question_count} -> {question_count})"
                    )
                row.question_count = question_count
            if is_summary_mode is not None:
                row.is_summary_mode = is_summary_mode
            if has_red_flag is not None:
                row.has_red_flag = has_red_flag
            row.updated_at = utcnow()
            await s.flush()

    async def delete_session(
        self, user_id: str, session_id: str, *, session: Optional[AsyncSession] = None
    ) -> bool:
        """Delete a session with its messages, action items and the insights it produced."""
        async with self._scope(session) as s:
            row = await s.get(SessionRow, session_id)
            if row is None or row.user_id != user_id:
                return False
            await s.execute(delete(MessageRow).where(MessageRow.session_id == session_id))
            await s.execute(delete(ActionItemRow).where(ActionItemRow.session_id == session_id))
            await self.delete_insights_by_session(user_id, session_id, session=s)
            await s.delete(row)
            await s.flush()
            logger.info("Deleted chat session %s", session_id)
            return True

    # ---------------------------
    # Messages
    # ---------------------------
    async def append_message(
        self, session_id: str, message: Message, *, session: Optional[AsyncSession] = None
    ) -> Message:
        """Append a message at the end of the session's log."""
        async with self._scope(session) as s:
            parent = await s.get(SessionRow, session_id)
            if parent is None:
                raise LookupError(f"chat session {session_id} does not exist")
            count = await s.scalar(
                select(func.count()).select_from(MessageRow).where(MessageRow.session_id == session_id)
            )
            row = MessageRow(
                id=message.id,
                session_id=session_id,
                position=count or 0,
                role=message.role,
                content=message.content,
                reasoning=(
                    [r.model_dump(mode="json") for r in message.reasoning]
                    if message.reasoning
                    else None
                ),
                client_id=message.client_id,
                created_at=message.timestamp,
            )
            s.add(row)
            parent.updated_at = utcnow()
            await s.flush()
            return _to_message(row)

    # ---------------------------
    # Action items
    # ---------------------------
    async def append_action_items(
        self,
        session_id: str,
        items: Iterable[ActionItemDraft],
        *,
        session: Optional[AsyncSession] = None,
    ) -> list[ActionItem]:
        async with self._scope(session) as s:
            if await s.get(SessionRow, session_id) is None:
                raise LookupError(f"chat session {session_id} does not exist")
            count = await s.scalar(
                select(func.count())
                .select_from(ActionItemRow)
                .where(ActionItemRow.session_id == session_id)
            ) or 0
            rows = []
            for offset, item in enumerate(items):
                row = ActionItemRow(
                    session_id=session_id,
                    position=count + offset,
                    task=item.task,
                    why=item.why,
                    urgency=item.urgency,
                )
                s.add(row)
                rows.append(row)
            await s.flush()
            return [_to_action_item(r) for r in rows]

    async def set_action_item_completed(
        self,
        session_id: str,
        item_id: str,
        completed: bool,
        *,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ActionItem]:
        async with self._scope(session) as s:
            row = await s.get(ActionItemRow, item_id)
            if row is None or row.session_id != session_id:
                return None
            row.completed = completed
            await s.flush()
            return _to_action_item(row)

    # ---------------------------
    # Insights
    # ---------------------------
    async def list_insights(
        self, user_id: str, *, session: Optional[AsyncSession] = None
    ) -> list[HealthInsight]:
        """Return the user's insight ledger, newest first."""
        async with self._scope(session) as s:
            res = await s.execute(
                select(InsightRow)
                .where(InsightRow.user_id == user_id)
                .order_by(InsightRow.created_at.desc())
            )
            return [_to_insight(r) for r in res.scalars().all()]

    async def append_insights(
        self,
        user_id: str,
        items: Iterable[InsightDraft],
        source_session_id: Optional[str] = None,
        *,
        session: Optional[AsyncSession] = None,
    ) -> list[HealthInsight]:
        async with self._scope(session) as s:
            rows = []
            for item in items:
                if item.category not in HEALTH_CATEGORIES:
                    logger.warning("Dropping insight with unknown category %r", item.category)
                    continue
                row = InsightRow(
                    user_id=user_id,
                    source_session_id=source_session_id or None,
                    category=item.category,
                    content=item.content,
                )
                s.add(row)
                rows.append(row)
            await s.flush()
            return [_to_insight(r) for r in rows]

    async def delete_insights_by_session(
        self, user_id: str, session_id: str, *, session: Optional[AsyncSession] = None
    ) -> int:
        async with self._scope(session) as s:
            res = await s.execute(
                delete(InsightRow).where(
                    InsightRow.user_id == user_id,
                    InsightRow.source_session_id == session_id,
                )
            )
            return res.rowcount or 0
