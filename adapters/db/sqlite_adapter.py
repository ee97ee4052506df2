"""
SQLite 어댑터

WAL 모드로 SQLite 연결 관리.
단일 로컬 writer를 가정하며, 모든 엔진 작업은 transaction() 하나 안에서 실행.

주의: SQLite alias로 time, count 사용 금지 (예약어)
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from core.constants import Paths

logger = logging.getLogger(__name__)


def get_db_path(path: Path | str | None = None) -> Path:
    """Ledger DB 경로 반환
    
    Args:
        path: 설정에 지정된 경로 (None이면 기본 경로)
        
    Returns:
        DB 파일 경로 (Path 타입)
    """
    if path is None:
        return Paths.LEDGER_DB
    return Path(path)


async def create_connection(
    db_path: Path | str,
    readonly: bool = False,
) -> aiosqlite.Connection:
    """SQLite 연결 생성 (WAL 모드)
    
    Args:
        db_path: DB 파일 경로
        readonly: 읽기 전용 여부
        
    Returns:
        aiosqlite 연결 객체 (row_factory = aiosqlite.Row)
    """
    db_path_str = str(db_path)
    
    # 디렉토리가 없으면 생성
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    
    if readonly:
        conn = await aiosqlite.connect(f"file:{db_path_str}?mode=ro", uri=True)
    else:
        conn = await aiosqlite.connect(db_path_str)
    
    # 컬럼 이름/인덱스 모두로 접근
    conn.row_factory = aiosqlite.Row
    
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=30000")  # 30초 대기
    await conn.execute("PRAGMA foreign_keys=ON")
    
    logger.info(
        "SQLite 연결 생성",
        extra={"db_path": db_path_str, "readonly": readonly},
    )
    
    return conn


class SQLiteAdapter:
    """SQLite 어댑터
    
    WAL 모드로 SQLite 연결 관리.
    트랜잭션 컨텍스트 매니저 제공 (중첩 호출 시 가장 바깥 트랜잭션에 합류).
    
    Args:
        db_path: DB 파일 경로
        readonly: 읽기 전용 여부 (리포트 조회용)
    
    사용 예시:
    ```python
    adapter = SQLiteAdapter(db_path)
    await adapter.connect()
    
    async with adapter.transaction():
        await adapter.execute("INSERT INTO ...")
    
    await adapter.close()
    ```
    """
    
    def __init__(self, db_path: Path | str, readonly: bool = False):
        self.db_path = Path(db_path)
        self.readonly = readonly
        self._conn: aiosqlite.Connection | None = None
        self._tx_depth = 0
    
    @property
    def is_connected(self) -> bool:
        """연결 상태 확인"""
        return self._conn is not None
    
    @property
    def in_transaction(self) -> bool:
        """transaction() 블록 내부 여부"""
        return self._tx_depth > 0
    
    async def connect(self) -> None:
        """연결 생성"""
        if self._conn is not None:
            return
        
        self._conn = await create_connection(self.db_path, self.readonly)
    
    async def close(self) -> None:
        """연결 종료"""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self._tx_depth = 0
            logger.info("SQLite 연결 종료")
    
    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Not connected to database")
        return self._conn
    
    async def execute(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> aiosqlite.Cursor:
        """SQL 실행"""
        conn = self._require_conn()
        
        if parameters:
            return await conn.execute(sql, parameters)
        return await conn.execute(sql)
    
    async def executemany(
        self,
        sql: str,
        parameters: list[tuple[Any, ...]],
    ) -> aiosqlite.Cursor:
        """SQL 다중 실행"""
        conn = self._require_conn()
        return await conn.executemany(sql, parameters)
    
    async def insert(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> int:
        """INSERT 실행 후 생성된 rowid 반환"""
        cursor = await self.execute(sql, parameters)
        row_id = cursor.lastrowid
        await cursor.close()
        if row_id is None:
            raise RuntimeError("INSERT did not produce a rowid")
        return row_id
    
    async def fetchone(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> aiosqlite.Row | None:
        """단일 행 조회"""
        cursor = await self.execute(sql, parameters)
        row = await cursor.fetchone()
        await cursor.close()
        return row
    
    async def fetchall(
        self,
        sql: str,
        parameters: tuple[Any, ...] | None = None,
    ) -> list[aiosqlite.Row]:
        """전체 행 조회"""
        cursor = await self.execute(sql, parameters)
        rows = await cursor.fetchall()
        await cursor.close()
        return list(rows)
    
    async def commit(self) -> None:
        """커밋 (트랜잭션 블록 내부에서는 무시)"""
        if self._conn is not None and self._tx_depth == 0:
            await self._conn.commit()
    
    async def rollback(self) -> None:
        """롤백"""
        if self._conn is not None:
            await self._conn.rollback()
    
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """트랜잭션 컨텍스트 매니저
        
        성공 시 자동 커밋, 예외 시 자동 롤백.
        중첩된 transaction()은 SAVEPOINT로 바깥 트랜잭션에 합류.
        중첩 블록에서 예외가 나면 해당 SAVEPOINT까지만 되돌리고 재발생,
        최종 커밋/롤백은 가장 바깥 블록에서만 수행.
        
        사용 예시:
        ```python
        async with adapter.transaction():
            await adapter.execute("INSERT INTO ...")
            # 성공 시 자동 커밋
        ```
        """
        conn = self._require_conn()
        
        if self._tx_depth > 0:
            savepoint = f"sp_{self._tx_depth}"
            await conn.execute(f"SAVEPOINT {savepoint}")
            self._tx_depth += 1
            try:
                yield conn
            except BaseException:
                await conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                await conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                raise
            else:
                await conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            finally:
                self._tx_depth -= 1
            return
        
        if not conn.in_transaction:
            # 읽기-검증-쓰기를 하나의 쓰기 잠금 아래에서 수행
            await conn.execute("BEGIN IMMEDIATE")
        
        self._tx_depth = 1
        try:
            yield conn
            self._tx_depth = 0
            await conn.commit()
        except BaseException:
            self._tx_depth = 0
            await conn.rollback()
            raise
    
    async def table_exists(self, table_name: str) -> bool:
        """테이블 존재 여부 확인"""
        result = await self.fetchone(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        return result is not None
    
    async def get_table_info(self, table_name: str) -> list[dict[str, Any]]:
        """테이블 정보 조회"""
        rows = await self.fetchall(f"PRAGMA table_info({table_name})")
        
        columns = []
        for row in rows:
            columns.append({
                "cid": row[0],
                "name": row[1],
                "type": row[2],
                "notnull": bool(row[3]),
                "default_value": row[4],
                "pk": bool(row[5]),
            })
        
        return columns
    
    # -------------------------------------------------------------------------
    # 컨텍스트 매니저
    # -------------------------------------------------------------------------
    
    async def __aenter__(self) -> "SQLiteAdapter":
        await self.connect()
        return self
    
    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
