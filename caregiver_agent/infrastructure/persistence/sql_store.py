"""
SQLAlchemy (async) implementation of the care data and conversation stores.

Works against any async driver; tests and local runs use aiosqlite.
"""

from typing import Any, AsyncIterator, Dict, List, Optional
from datetime import datetime
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, Text, Date, select, delete, func, desc, asc, or_
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from caregiver_agent.domain.context.memory.care_store import (
    CareStore,
    ConversationRepository,
    ConversationTransaction,
    EntityLocks,
)
from caregiver_agent.domain.models.care_models import (
    ActivityCategory,
    ActivityRecord,
    ConversationTurn,
    EntityProfile,
    Measurement,
)

logger = structlog.get_logger(__name__)

Base = declarative_base()


class EntityRow(Base):
    __tablename__ = "entities"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    birth_date = Column(Date, nullable=False)
    sex = Column(String(16), nullable=False, default="unknown")
    group_id = Column(String(64), nullable=False, index=True)
    ai_settings = Column(JSON, nullable=True)

    def to_model(self) -> EntityProfile:
        return EntityProfile(
            id=self.id,
            name=self.name,
            birth_date=self.birth_date,
            sex=self.sex,
            group_id=self.group_id,
        )


_ACTIVITY_FIELDS = (
    "feeding_type", "amount_ml", "breast_side", "duration_minutes", "sleep_type",
    "diaper_type", "stool_condition", "temperature_c", "medicine_name",
    "medicine_amount", "medicine_unit", "note",
)


class ActivityRow(Base):
    __tablename__ = "activities"

    id = Column(String(64), primary_key=True)
    entity_id = Column(String(64), nullable=False, index=True)
    category = Column(String(32), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)

    feeding_type = Column(String(32), nullable=True)
    amount_ml = Column(Float, nullable=True)
    breast_side = Column(String(16), nullable=True)
    duration_minutes = Column(Float, nullable=True)
    sleep_type = Column(String(16), nullable=True)
    diaper_type = Column(String(16), nullable=True)
    stool_condition = Column(String(32), nullable=True)
    temperature_c = Column(Float, nullable=True)
    medicine_name = Column(String(255), nullable=True)
    medicine_amount = Column(Float, nullable=True)
    medicine_unit = Column(String(16), nullable=True)
    note = Column(Text, nullable=True)

    @classmethod
    def from_model(cls, record: ActivityRecord) -> "ActivityRow":
        return cls(
            id=record.id,
            entity_id=record.entity_id,
            category=record.category.value,
            start_time=record.start_time,
            end_time=record.end_time,
            **{name: getattr(record, name) for name in _ACTIVITY_FIELDS}
        )

    def to_model(self) -> ActivityRecord:
        return ActivityRecord(
            id=self.id,
            entity_id=self.entity_id,
            category=ActivityCategory(self.category),
            start_time=self.start_time,
            end_time=self.end_time,
            **{name: getattr(self, name) for name in _ACTIVITY_FIELDS}
        )


class MeasurementRow(Base):
    __tablename__ = "measurements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(String(64), nullable=False, index=True)
    measured_at = Column(DateTime, nullable=False)
    weight_kg = Column(Float, nullable=True)
    height_cm = Column(Float, nullable=True)

    def to_model(self) -> Measurement:
        return Measurement(
            entity_id=self.entity_id,
            measured_at=self.measured_at,
            weight_kg=self.weight_kg,
            height_cm=self.height_cm,
        )


class ChatTurnRow(Base):
    __tablename__ = "chat_turns"

    # seq breaks created_at ties in insertion order
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False)
    entity_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    message = Column(Text, nullable=False)
    reply = Column(Text, nullable=False)
    summary = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)

    @classmethod
    def from_model(cls, turn: ConversationTurn) -> "ChatTurnRow":
        return cls(
            id=turn.id,
            entity_id=turn.entity_id,
            user_id=turn.user_id,
            message=turn.message,
            reply=turn.reply,
            summary=turn.summary,
            created_at=turn.created_at,
        )

    def to_model(self) -> ConversationTurn:
        return ConversationTurn(
            id=self.id,
            entity_id=self.entity_id,
            user_id=self.user_id,
            message=self.message,
            reply=self.reply,
            summary=self.summary or {},
            created_at=self.created_at,
        )


class _SqlTransaction(ConversationTransaction):
    def __init__(self, session: AsyncSession, entity_id: str):
        self.session = session
        self.entity_id = entity_id

    async def count(self) -> int:
        result = await self.session.execute(
            select(func.count(ChatTurnRow.seq)).where(ChatTurnRow.entity_id == self.entity_id)
        )
        return result.scalar_one()

    async def find_oldest(self) -> Optional[ConversationTurn]:
        result = await self.session.execute(
            select(ChatTurnRow)
            .where(ChatTurnRow.entity_id == self.entity_id)
            .order_by(asc(ChatTurnRow.created_at), asc(ChatTurnRow.seq))
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return row.to_model() if row is not None else None

    async def delete(self, turn_id: str) -> None:
        await self.session.execute(delete(ChatTurnRow).where(ChatTurnRow.id == turn_id))

    async def insert(self, turn: ConversationTurn) -> None:
        self.session.add(ChatTurnRow.from_model(turn))
        await self.session.flush()


class SqlCareStore(CareStore, ConversationRepository):
    """Relational store for care data and conversation turns"""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        self._entity_locks = EntityLocks()

    @classmethod
    def from_url(cls, database_url: str) -> "SqlCareStore":
        return cls(create_async_engine(database_url))

    async def create_schema(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ready")

    async def close(self):
        await self.engine.dispose()

    # Seeding

    async def add_profile(self, profile: EntityProfile):
        async with self.sessionmaker() as session, session.begin():
            session.add(EntityRow(
                id=profile.id,
                name=profile.name,
                birth_date=profile.birth_date,
                sex=profile.sex,
                group_id=profile.group_id,
            ))

    async def save_category_settings(self, entity_id: str, saved: Dict[str, Any]):
        async with self.sessionmaker() as session, session.begin():
            row = await session.get(EntityRow, entity_id)
            if row is None:
                raise ValueError(f"Unknown entity: {entity_id}")
            row.ai_settings = dict(saved)

    async def add_activity(self, record: ActivityRecord):
        """Store an activity; callers must invalidate the entity's context cache"""

        async with self.sessionmaker() as session, session.begin():
            session.add(ActivityRow.from_model(record))

    async def add_measurement(self, measurement: Measurement):
        async with self.sessionmaker() as session, session.begin():
            session.add(MeasurementRow(
                entity_id=measurement.entity_id,
                measured_at=measurement.measured_at,
                weight_kg=measurement.weight_kg,
                height_cm=measurement.height_cm,
            ))

    # CareStore

    async def get_profile(self, entity_id: str) -> Optional[EntityProfile]:
        async with self.sessionmaker() as session:
            row = await session.get(EntityRow, entity_id)
            return row.to_model() if row is not None else None

    async def get_category_settings(self, entity_id: str) -> Optional[Dict[str, Any]]:
        async with self.sessionmaker() as session:
            row = await session.get(EntityRow, entity_id)
            if row is None or row.ai_settings is None:
                return None
            return dict(row.ai_settings)

    async def list_activities(
        self,
        entity_id: str,
        categories: List[ActivityCategory],
        since: datetime,
        until: Optional[datetime] = None
    ) -> List[ActivityRecord]:
        if not categories:
            return []

        query = (
            select(ActivityRow)
            .where(ActivityRow.entity_id == entity_id)
            .where(ActivityRow.category.in_([c.value for c in categories]))
            .where(ActivityRow.start_time >= since)
        )
        if until is not None:
            query = query.where(ActivityRow.start_time < until)

        async with self.sessionmaker() as session:
            result = await session.execute(query.order_by(asc(ActivityRow.start_time)))
            return [row.to_model() for row in result.scalars()]

    async def list_measurements(self, entity_id: str) -> List[Measurement]:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(MeasurementRow)
                .where(MeasurementRow.entity_id == entity_id)
                .order_by(asc(MeasurementRow.measured_at))
            )
            return [row.to_model() for row in result.scalars()]

    # ConversationRepository

    @asynccontextmanager
    async def transaction(self, entity_id: str) -> AsyncIterator[ConversationTransaction]:
        # The row lock serializes writers across processes; the asyncio lock
        # covers drivers (sqlite) that ignore FOR UPDATE.
        async with self._entity_locks[entity_id]:
            async with self.sessionmaker() as session, session.begin():
                await session.execute(
                    select(EntityRow.id).where(EntityRow.id == entity_id).with_for_update()
                )
                yield _SqlTransaction(session, entity_id)

    async def find_recent(self, entity_id: str, limit: int) -> List[ConversationTurn]:
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(ChatTurnRow)
                .where(ChatTurnRow.entity_id == entity_id)
                .order_by(desc(ChatTurnRow.created_at), desc(ChatTurnRow.seq))
                .limit(limit)
            )
            return [row.to_model() for row in result.scalars()]

    async def find_by_keyword(self, entity_id: str, keyword: str, limit: int) -> List[ConversationTurn]:
        escaped = keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        async with self.sessionmaker() as session:
            result = await session.execute(
                select(ChatTurnRow)
                .where(ChatTurnRow.entity_id == entity_id)
                .where(or_(
                    ChatTurnRow.message.ilike(pattern, escape="\\"),
                    ChatTurnRow.reply.ilike(pattern, escape="\\"),
                ))
                .order_by(desc(ChatTurnRow.created_at), desc(ChatTurnRow.seq))
                .limit(limit)
            )
            return [row.to_model() for row in result.scalars()]
