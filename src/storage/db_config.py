import aiosqlite
import os
from pathlib import Path

from errors import StorageNotReadyError

_SQL_DIR = Path(__file__).with_name("sql")

conn: aiosqlite.Connection | None = None


def ensure_conn() -> aiosqlite.Connection:
    if conn is None:
        raise StorageNotReadyError()
    return conn


async def _column_exists(table: str, column: str) -> bool:
    global conn
    async with conn.execute(f"PRAGMA table_info({table})") as cursor:
        async for row in cursor:
            if row[1] == column:
                return True
    return False


async def init_db(db_path: str) -> None:
    db_dir = os.path.dirname(db_path)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir, exist_ok=True)
    global conn
    conn = await aiosqlite.connect(db_path)

    async with conn.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        user_version = row[0]

    if user_version == 0:
        init_sql = (_SQL_DIR / "db_init_v1.sql").read_text(encoding="utf-8")
        await conn.executescript(init_sql)
        await conn.execute("PRAGMA user_version = 1")

    if user_version < 2:
        # v2: 投递记录增加错误信息, 便于排查 failed 记录
        if not await _column_exists("notification_log", "error"):
            await conn.execute("ALTER TABLE notification_log ADD COLUMN error TEXT")
        await conn.execute("PRAGMA user_version = 2")

    # 数据库升级逻辑可以在这里继续添加
    await conn.commit()


async def close_db() -> None:
    global conn
    if conn is not None:
        await conn.close()
        conn = None

__all__ = ["conn", "init_db", "close_db", "ensure_conn"]
