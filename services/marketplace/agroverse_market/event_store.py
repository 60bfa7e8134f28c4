"""
Marketplace Service - イベントストア

商品に起きた事実(出品・入札)を追記していく。
(aggregate_id, version) の UNIQUE 制約により、同じバージョンへの
二重書き込みは IntegrityError になる → 競合として検知できる。
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from .schema import event_store


async def append_event(
    session: AsyncSession,
    aggregate_id: UUID,
    aggregate_type: str,
    event_type: str,
    event_data: dict,
    expected_version: int,
) -> int:
    """
    イベントを追記し、新しいバージョンを返す。

    commit はしない。呼び出し側が集約ドキュメントの更新と
    同じトランザクションでコミットする。
    """
    new_version = expected_version + 1
    await session.execute(
        insert(event_store).values(
            aggregate_id=str(aggregate_id),
            aggregate_type=aggregate_type,
            event_type=event_type,
            event_data=event_data,
            version=new_version,
            created_at=datetime.now(timezone.utc),
        )
    )
    return new_version


def _row_to_dict(row) -> dict:
    return {
        "aggregate_id": row.aggregate_id,
        "aggregate_type": row.aggregate_type,
        "event_type": row.event_type,
        "event_data": row.event_data,
        "version": row.version,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def load_events(
    session: AsyncSession,
    aggregate_id: UUID,
) -> list[dict]:
    """指定した集約のイベントをバージョン順に読み出す(リプレイ用)。"""
    result = await session.execute(
        select(event_store)
        .where(event_store.c.aggregate_id == str(aggregate_id))
        .order_by(event_store.c.version.asc())
    )
    return [_row_to_dict(row) for row in result.fetchall()]


async def load_all_events(session: AsyncSession) -> list[dict]:
    """すべてのイベントを時系列順に返す(デバッグ用)。"""
    result = await session.execute(
        select(event_store).order_by(
            event_store.c.created_at.asc(), event_store.c.id.asc()
        )
    )
    return [_row_to_dict(row) for row in result.fetchall()]
