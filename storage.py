"""
Roster and history repositories.

The allocation engine never touches storage; the API talks to these
interfaces, backed here by sqlite.
"""
import json
import logging
import sqlite3
from typing import List, Optional, Protocol, Sequence

from pydantic import BaseModel

from allocation import AllocationRecord

logger = logging.getLogger(__name__)


class Employee(BaseModel):
    id: int
    name: str
    position: int
    created_at: Optional[str] = None


class StoredRecord(AllocationRecord):
    id: int


class RosterRepository(Protocol):
    def list(self) -> List[Employee]: ...

    def add(self, name: str) -> Employee: ...

    def remove(self, employee_id: int) -> bool: ...

    def reorder(self, employee_ids: Sequence[int]) -> List[Employee]: ...


class HistoryRepository(Protocol):
    def save(self, record: AllocationRecord) -> int: ...

    def list(self, limit: int) -> List[StoredRecord]: ...

    def delete(self, record_id: int) -> bool: ...


class SqliteRoster:
    """Ordered employee roster; names are unique."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS employees (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT UNIQUE NOT NULL,
                    position INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            conn.commit()
        finally:
            conn.close()

    def list(self) -> List[Employee]:
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT id, name, position, created_at
                FROM employees
                ORDER BY position IS NULL, position, id
            ''')
            rows = cursor.fetchall()

            # rows written without a position get renumbered in place
            if any(r[2] is None for r in rows):
                logger.info("Renumbering %d roster rows", len(rows))
                cursor.executemany(
                    'UPDATE employees SET position = ? WHERE id = ?',
                    [(index, r[0]) for index, r in enumerate(rows)],
                )
                conn.commit()
                rows = [(r[0], r[1], index, r[3]) for index, r in enumerate(rows)]
        finally:
            conn.close()

        return [Employee(id=r[0], name=r[1], position=r[2], created_at=r[3]) for r in rows]

    def add(self, name: str) -> Employee:
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute('SELECT COALESCE(MAX(position) + 1, 0) FROM employees')
            position = cursor.fetchone()[0]
            cursor.execute(
                'INSERT INTO employees (name, position) VALUES (?, ?)',
                (name, position),
            )
            conn.commit()
            employee_id = cursor.lastrowid
            cursor.execute('SELECT created_at FROM employees WHERE id = ?', (employee_id,))
            created_at = cursor.fetchone()[0]
        finally:
            conn.close()

        logger.info("Added employee %s (id=%s)", name, employee_id)
        return Employee(id=employee_id, name=name, position=position, created_at=created_at)

    def remove(self, employee_id: int) -> bool:
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM employees WHERE id = ?', (employee_id,))
            conn.commit()
            removed = cursor.rowcount > 0
        finally:
            conn.close()

        if removed:
            logger.info("Removed employee id=%s", employee_id)
        return removed

    def reorder(self, employee_ids: Sequence[int]) -> List[Employee]:
        current = {e.id for e in self.list()}
        if len(employee_ids) != len(current) or set(employee_ids) != current:
            raise ValueError("Order must list every employee exactly once")

        conn = sqlite3.connect(self.db_path)
        try:
            conn.executemany(
                'UPDATE employees SET position = ? WHERE id = ?',
                [(index, employee_id) for index, employee_id in enumerate(employee_ids)],
            )
            conn.commit()
        finally:
            conn.close()
        return self.list()

    def seed(self, names: Sequence[str]) -> int:
        """Insert `names` in order, only if the roster is empty. Returns how many were added."""
        if not names or self.list():
            return 0
        for name in names:
            self.add(name)
        logger.info("Seeded roster with %d employees", len(names))
        return len(names)


class SqliteHistory:
    """Saved allocation records, newest first."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS tip_distributions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    total_tips REAL NOT NULL,
                    sales_tax REAL NOT NULL,
                    net_tips REAL NOT NULL,
                    remainder REAL NOT NULL,
                    employee_data TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL
                )
            ''')
            conn.commit()
        finally:
            conn.close()

    def save(self, record: AllocationRecord) -> int:
        employee_data = {name: entry.model_dump() for name, entry in record.employee_data.items()}

        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO tip_distributions (total_tips, sales_tax, net_tips, remainder, employee_data, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (
                record.total_tips,
                record.sales_tax,
                record.net_tips,
                record.remainder,
                json.dumps(employee_data),
                record.timestamp.isoformat(),
            ))
            conn.commit()
            record_id = cursor.lastrowid
        finally:
            conn.close()

        logger.info("Tip calculation saved with id=%s", record_id)
        return record_id

    def list(self, limit: int = 50) -> List[StoredRecord]:
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT id, total_tips, sales_tax, net_tips, remainder, employee_data, created_at
                FROM tip_distributions
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            ''', (limit,))
            rows = cursor.fetchall()
        finally:
            conn.close()

        return [
            StoredRecord(
                id=row[0],
                total_tips=row[1],
                sales_tax=row[2],
                net_tips=row[3],
                remainder=row[4],
                employee_data=json.loads(row[5]),
                timestamp=row[6],
            )
            for row in rows
        ]

    def delete(self, record_id: int) -> bool:
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM tip_distributions WHERE id = ?', (record_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            conn.close()

        if deleted:
            logger.info("History entry deleted with id=%s", record_id)
        return deleted
