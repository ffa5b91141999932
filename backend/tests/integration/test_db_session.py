"""Tests for engine and session lifecycle helpers."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from healthpass.core.config import Settings
from healthpass.db.models import AuthorityType, HealthAuthority
from healthpass.db.session import close_db, get_session_factory, init_db, session_scope


@pytest.fixture
def sqlite_settings(tmp_path) -> Settings:
    return Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")


async def _authority_count() -> int:
    async with get_session_factory()() as session:
        return (
            await session.execute(select(func.count()).select_from(HealthAuthority))
        ).scalar_one()


def _authority(name: str) -> HealthAuthority:
    return HealthAuthority(name=name, authority_type=AuthorityType.CLINIC, public_key="04")


@pytest.mark.asyncio
async def test_session_scope_commits(sqlite_settings: Settings) -> None:
    await init_db(sqlite_settings, create_schema=True)
    try:
        async with session_scope() as session:
            session.add(_authority("Clinic A"))

        assert await _authority_count() == 1
    finally:
        await close_db()


@pytest.mark.asyncio
async def test_session_scope_rolls_back_on_error(sqlite_settings: Settings) -> None:
    await init_db(sqlite_settings, create_schema=True)
    try:
        with pytest.raises(RuntimeError):
            async with session_scope() as session:
                session.add(_authority("Clinic B"))
                await session.flush()
                raise RuntimeError("abort")

        assert await _authority_count() == 0
    finally:
        await close_db()


@pytest.mark.asyncio
async def test_factory_requires_init() -> None:
    await close_db()
    with pytest.raises(RuntimeError, match="init_db"):
        get_session_factory()
