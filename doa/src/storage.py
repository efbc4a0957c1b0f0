"""SQLite-backed storage for DOA data models.

Provides CRUD operations for browse items and their approval chains,
roles, countries, value thresholds, users, and application settings.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from doa.src.hierarchy.codes import clean_code
from doa.src.models import (
    AppSetting,
    Approver,
    BrowseItem,
    Country,
    RiskLevel,
    Role,
    Threshold,
    ThresholdApprover,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    sort_order INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS countries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    risk_level TEXT NOT NULL DEFAULT 'safe',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS browse_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL,
    parent_code TEXT,
    title TEXT NOT NULL,
    description TEXT,
    comments TEXT,
    function_name TEXT,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS browse_item_approvers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    browse_item_id INTEGER NOT NULL,
    role_id INTEGER NOT NULL,
    action TEXT NOT NULL,
    kind TEXT DEFAULT '',
    label TEXT DEFAULT '',
    sort_order INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (browse_item_id) REFERENCES browse_items(id) ON DELETE CASCADE,
    FOREIGN KEY (role_id) REFERENCES roles(id)
);

CREATE TABLE IF NOT EXISTS thresholds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    threshold_id TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL,
    name TEXT NOT NULL,
    code TEXT NOT NULL,
    min_value REAL,
    max_value REAL,
    min_capex REAL,
    max_capex REAL,
    min_markup REAL,
    max_markup REAL,
    max_gross_margin REAL,
    condition_text TEXT,
    notes TEXT,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS threshold_approvers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    threshold_id INTEGER NOT NULL,
    role_id INTEGER NOT NULL,
    action TEXT NOT NULL,
    label TEXT DEFAULT 'Approve',
    sort_order INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (threshold_id) REFERENCES thresholds(id) ON DELETE CASCADE,
    FOREIGN KEY (role_id) REFERENCES roles(id)
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    display_name TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'viewer',
    is_active INTEGER NOT NULL DEFAULT 1,
    last_login_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_browse_items_code
    ON browse_items(code);
CREATE INDEX IF NOT EXISTS idx_browse_items_sort
    ON browse_items(sort_order);
CREATE INDEX IF NOT EXISTS idx_browse_item_approvers_item
    ON browse_item_approvers(browse_item_id);
CREATE INDEX IF NOT EXISTS idx_threshold_approvers_threshold
    ON threshold_approvers(threshold_id);
"""

_THRESHOLD_FIELDS = (
    "threshold_id",
    "type",
    "name",
    "code",
    "min_value",
    "max_value",
    "min_capex",
    "max_capex",
    "min_markup",
    "max_markup",
    "max_gross_margin",
    "condition_text",
    "notes",
    "sort_order",
)


class DoaStorageError(Exception):
    """Raised for storage-level errors (duplicates, not found, etc.)."""


class ChildItemsExistError(DoaStorageError):
    """Raised when deleting an item that other items name as parent."""

    def __init__(self, code: str, count: int) -> None:
        super().__init__(f"Browse item {code} has {count} children")
        self.code = code
        self.count = count


def _code_forms(code: str) -> tuple[str, str]:
    """A code with and without its trailing dot, in that order."""
    cleaned = clean_code(code)
    return (f"{cleaned}.", cleaned)


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _unicode_lower(value: str | None) -> str | None:
    # SQLite lower() and LIKE only fold ASCII letters
    return value.lower() if value is not None else None


class DoaStorage:
    """SQLite-backed storage for DOA domain models.

    Args:
        db_path: Path to SQLite database file, or ':memory:' for in-memory.
        check_same_thread: Passed to sqlite3; False when the connection is
            shared with a web server's worker threads.

    Example::

        with DoaStorage("doa.db") as store:
            store.initialize_schema()
            store.create_role(Role(id=None, name="CEO"))
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        check_same_thread: bool = True,
    ) -> None:
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=check_same_thread)
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.create_function("unicode_lower", 1, _unicode_lower, deterministic=True)
        self._conn.row_factory = sqlite3.Row

    def __enter__(self) -> DoaStorage:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Close the database connection."""
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def initialize_schema(self) -> None:
        """Create all tables and indexes if they don't exist."""
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.commit()
        logger.info("DOA storage schema ready at %s", self._db_path)

    # ---------------------------------------------------------------
    # Roles
    # ---------------------------------------------------------------

    def create_role(self, role: Role) -> Role:
        """Insert a new role.

        Args:
            role: Role to insert; its id is assigned here.

        Returns:
            The inserted role.

        Raises:
            DoaStorageError: If a role with the same name exists.
        """
        try:
            cursor = self._conn.execute(
                "INSERT INTO roles (name, sort_order, is_active, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    role.name,
                    role.sort_order,
                    int(role.is_active),
                    role.created_at.isoformat(),
                    role.updated_at.isoformat(),
                ),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            raise DoaStorageError(f"Role already exists: {role.name}") from exc
        role.id = cursor.lastrowid
        return role

    def get_role(self, role_id: int) -> Role | None:
        """Fetch a role by ID.

        Args:
            role_id: The role's ID.

        Returns:
            Role or None if not found.
        """
        row = self._conn.execute("SELECT * FROM roles WHERE id = ?", (role_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_role(row)

    def get_roles(self) -> list[Role]:
        """Fetch all roles in display order."""
        rows = self._conn.execute("SELECT * FROM roles ORDER BY sort_order, id").fetchall()
        return [self._row_to_role(r) for r in rows]

    def update_role(self, role: Role) -> Role:
        """Update an existing role.

        Args:
            role: Role with updated fields.

        Returns:
            The updated role with refreshed updated_at.

        Raises:
            DoaStorageError: If the role does not exist or the name is taken.
        """
        role.updated_at = datetime.now()
        try:
            cursor = self._conn.execute(
                "UPDATE roles SET name = ?, sort_order = ?, is_active = ?, updated_at = ? "
                "WHERE id = ?",
                (
                    role.name,
                    role.sort_order,
                    int(role.is_active),
                    role.updated_at.isoformat(),
                    role.id,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DoaStorageError(f"Role name already in use: {role.name}") from exc
        if cursor.rowcount == 0:
            raise DoaStorageError(f"Role not found: {role.id}")
        self._conn.commit()
        return role

    def delete_role(self, role_id: int) -> bool:
        """Delete a role by ID.

        Args:
            role_id: ID of the role to delete.

        Returns:
            True if deleted, False if not found.

        Raises:
            DoaStorageError: If the role is still referenced by an approval chain.
        """
        try:
            cursor = self._conn.execute("DELETE FROM roles WHERE id = ?", (role_id,))
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise DoaStorageError(f"Role is used in approval chains: {role_id}") from exc
        return cursor.rowcount > 0

    def _ensure_role(self, name: str) -> int:
        """Return the ID of the named role, creating it at the end of the list.

        Does not commit; callers commit with their own writes.
        """
        row = self._conn.execute("SELECT id FROM roles WHERE name = ?", (name,)).fetchone()
        if row is not None:
            return int(row["id"])
        next_order = self._conn.execute(
            "SELECT COALESCE(MAX(sort_order), 0) + 1 FROM roles"
        ).fetchone()[0]
        now = datetime.now().isoformat()
        cursor = self._conn.execute(
            "INSERT INTO roles (name, sort_order, is_active, created_at, updated_at) "
            "VALUES (?, ?, 1, ?, ?)",
            (name, next_order, now, now),
        )
        return int(cursor.lastrowid)  # type: ignore[arg-type]

    # ---------------------------------------------------------------
    # Countries
    # ---------------------------------------------------------------

    def create_country(self, country: Country) -> Country:
        """Insert a new country.

        Raises:
            DoaStorageError: If a country with the same name exists.
        """
        try:
            cursor = self._conn.execute(
                "INSERT INTO countries (name, risk_level, created_at, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    country.name,
                    country.risk_level.value,
                    country.created_at.isoformat(),
                    country.updated_at.isoformat(),
                ),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            raise DoaStorageError(f"Country already exists: {country.name}") from exc
        country.id = cursor.lastrowid
        return country

    def get_country(self, country_id: int) -> Country | None:
        """Fetch a country by ID, or None."""
        row = self._conn.execute(
            "SELECT * FROM countries WHERE id = ?", (country_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_country(row)

    def get_country_by_name(self, name: str) -> Country | None:
        """Fetch a country by exact name, or None."""
        row = self._conn.execute(
            "SELECT * FROM countries WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_country(row)

    def get_countries(self) -> list[Country]:
        """Fetch all countries ordered by name."""
        rows = self._conn.execute("SELECT * FROM countries ORDER BY name").fetchall()
        return [self._row_to_country(r) for r in rows]

    def update_country_risk(self, country_id: int, risk_level: RiskLevel) -> Country:
        """Change a country's risk level.

        Raises:
            DoaStorageError: If the country does not exist.
        """
        cursor = self._conn.execute(
            "UPDATE countries SET risk_level = ?, updated_at = ? WHERE id = ?",
            (risk_level.value, datetime.now().isoformat(), country_id),
        )
        if cursor.rowcount == 0:
            raise DoaStorageError(f"Country not found: {country_id}")
        self._conn.commit()
        return self.get_country(country_id)  # type: ignore[return-value]

    def delete_country(self, country_id: int) -> bool:
        """Delete a country by ID. Returns True if deleted."""
        cursor = self._conn.execute("DELETE FROM countries WHERE id = ?", (country_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    # ---------------------------------------------------------------
    # Browse items
    # ---------------------------------------------------------------

    def create_browse_item(self, item: BrowseItem) -> BrowseItem:
        """Insert a browse item and its approval chain.

        Roles named in the chain are created if missing.

        Args:
            item: Item to insert; its id is assigned here.

        Returns:
            The inserted item.

        Raises:
            DoaStorageError: If the insert violates a constraint.
        """
        try:
            cursor = self._conn.execute(
                "INSERT INTO browse_items "
                "(code, parent_code, title, description, comments, function_name, "
                "sort_order, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    item.code,
                    item.parent_code,
                    item.title,
                    item.description,
                    item.comments,
                    item.function_name,
                    item.sort_order,
                    item.created_at.isoformat(),
                    item.updated_at.isoformat(),
                ),
            )
            item_id = int(cursor.lastrowid)  # type: ignore[arg-type]
            self._insert_item_approvers(item_id, item.approvers)
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise DoaStorageError(f"Browse item creation failed: {item.code}") from exc
        item.id = item_id
        return item

    def get_browse_item(self, item_id: int) -> BrowseItem | None:
        """Fetch a browse item with its approval chain, or None."""
        row = self._conn.execute(
            "SELECT * FROM browse_items WHERE id = ?", (item_id,)
        ).fetchone()
        if row is None:
            return None
        item = self._row_to_browse_item(row)
        item.approvers = self._approvers_by_item([item_id]).get(item_id, [])
        return item

    def get_browse_item_by_code(self, code: str) -> BrowseItem | None:
        """Fetch the first item (in document order) with this exact code."""
        row = self._conn.execute(
            "SELECT * FROM browse_items WHERE code = ? ORDER BY sort_order, id LIMIT 1",
            (code,),
        ).fetchone()
        if row is None:
            return None
        item = self._row_to_browse_item(row)
        item.approvers = self._approvers_by_item([item.id]).get(item.id, [])  # type: ignore[list-item]
        return item

    def get_all_browse_items(
        self,
        search: str | None = None,
        function_name: str | None = None,
    ) -> list[BrowseItem]:
        """Fetch items with approval chains, optionally pre-filtered.

        Args:
            search: Substring matched against code, title, description
                and comments, case-insensitive for any script.
            function_name: Exact raw function name.

        Returns:
            Items ordered by sort_order, then code.
        """
        sql = "SELECT * FROM browse_items WHERE 1 = 1"
        params: list[Any] = []
        if search:
            pattern = _like_pattern(search)
            sql += (
                " AND (unicode_lower(code) LIKE unicode_lower(?) ESCAPE '\\'"
                " OR unicode_lower(title) LIKE unicode_lower(?) ESCAPE '\\'"
                " OR unicode_lower(description) LIKE unicode_lower(?) ESCAPE '\\'"
                " OR unicode_lower(comments) LIKE unicode_lower(?) ESCAPE '\\')"
            )
            params.extend([pattern] * 4)
        if function_name:
            sql += " AND function_name = ?"
            params.append(function_name)
        sql += " ORDER BY sort_order, code"

        rows = self._conn.execute(sql, params).fetchall()
        items = [self._row_to_browse_item(r) for r in rows]
        if not items:
            return []

        chains = self._approvers_by_item([item.id for item in items])  # type: ignore[misc]
        for item in items:
            item.approvers = chains.get(item.id, [])  # type: ignore[arg-type]
        return items

    def get_all_functions(self) -> list[str]:
        """Distinct non-blank function names, as stored."""
        rows = self._conn.execute(
            "SELECT DISTINCT function_name FROM browse_items "
            "WHERE function_name IS NOT NULL AND function_name != '' "
            "ORDER BY function_name"
        ).fetchall()
        return [r["function_name"] for r in rows]

    def update_browse_item(self, item: BrowseItem) -> BrowseItem:
        """Update an item and replace its approval chain.

        Raises:
            DoaStorageError: If the item does not exist.
        """
        item.updated_at = datetime.now()
        try:
            cursor = self._conn.execute(
                "UPDATE browse_items SET code = ?, parent_code = ?, title = ?, "
                "description = ?, comments = ?, function_name = ?, sort_order = ?, "
                "updated_at = ? WHERE id = ?",
                (
                    item.code,
                    item.parent_code,
                    item.title,
                    item.description,
                    item.comments,
                    item.function_name,
                    item.sort_order,
                    item.updated_at.isoformat(),
                    item.id,
                ),
            )
            if cursor.rowcount == 0:
                self._conn.rollback()
                raise DoaStorageError(f"Browse item not found: {item.id}")
            self._conn.execute(
                "DELETE FROM browse_item_approvers WHERE browse_item_id = ?", (item.id,)
            )
            self._insert_item_approvers(item.id, item.approvers)  # type: ignore[arg-type]
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise DoaStorageError(f"Browse item update failed: {item.id}") from exc
        return item

    def count_child_items(self, code: str, exclude_id: int | None = None) -> int:
        """Count items naming *code* as their parent.

        Trailing-dot variants match, so "2.1." counts children of "2.1".

        Args:
            code: Parent code.
            exclude_id: Item to leave out, for self-referencing parents.

        Returns:
            Number of direct children.
        """
        row = self._conn.execute(
            "SELECT COUNT(*) FROM browse_items WHERE parent_code IN (?, ?) AND id != ?",
            (*_code_forms(code), -1 if exclude_id is None else exclude_id),
        ).fetchone()
        return row[0]

    def delete_browse_item(self, item_id: int, cascade: bool = False) -> int:
        """Delete an item; its approval chain goes with it.

        Args:
            item_id: The item's ID.
            cascade: Also delete every item below it, following parent_code
                links down the tree.

        Returns:
            Number of items deleted, 0 if the item does not exist.

        Raises:
            ChildItemsExistError: If the item has children and cascade is off.
        """
        row = self._conn.execute(
            "SELECT code FROM browse_items WHERE id = ?", (item_id,)
        ).fetchone()
        if row is None:
            return 0

        child_count = self.count_child_items(row["code"], exclude_id=item_id)
        if child_count and not cascade:
            raise ChildItemsExistError(row["code"], child_count)

        doomed = [item_id]
        if child_count:
            doomed.extend(self._descendant_ids(row["code"], {item_id}))
        placeholders = ", ".join("?" for _ in doomed)
        self._conn.execute(f"DELETE FROM browse_items WHERE id IN ({placeholders})", doomed)
        self._conn.commit()
        if len(doomed) > 1:
            logger.info("Deleted browse item %s with %d descendants", item_id, len(doomed) - 1)
        return len(doomed)

    def _descendant_ids(self, code: str, seen: set[int]) -> list[int]:
        """IDs of all items below *code*, breadth-first, skipping *seen*."""
        found: list[int] = []
        pending = [code]
        visited: set[str] = set()
        while pending:
            current = pending.pop(0)
            forms = _code_forms(current)
            if forms[1] in visited:
                continue
            visited.add(forms[1])
            rows = self._conn.execute(
                "SELECT id, code FROM browse_items WHERE parent_code IN (?, ?)", forms
            ).fetchall()
            for r in rows:
                if r["id"] in seen:
                    continue
                seen.add(r["id"])
                found.append(r["id"])
                pending.append(r["code"])
        return found

    def _insert_item_approvers(self, item_id: int, approvers: list[Approver]) -> None:
        for position, approver in enumerate(approvers):
            role_id = self._ensure_role(approver.role)
            self._conn.execute(
                "INSERT INTO browse_item_approvers "
                "(browse_item_id, role_id, action, kind, label, sort_order) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (item_id, role_id, approver.action, approver.kind, approver.label, position),
            )

    def _approvers_by_item(self, item_ids: list[int]) -> dict[int, list[Approver]]:
        """Fetch approval chains for many items in one query."""
        placeholders = ", ".join("?" for _ in item_ids)
        rows = self._conn.execute(
            "SELECT bia.browse_item_id, r.name AS role_name, bia.action, bia.kind, bia.label "
            "FROM browse_item_approvers bia "
            "JOIN roles r ON r.id = bia.role_id "
            f"WHERE bia.browse_item_id IN ({placeholders}) "
            "ORDER BY bia.browse_item_id, bia.sort_order",
            item_ids,
        ).fetchall()
        chains: dict[int, list[Approver]] = {}
        for row in rows:
            chains.setdefault(row["browse_item_id"], []).append(
                Approver(
                    role=row["role_name"],
                    action=row["action"],
                    kind=row["kind"] or "",
                    label=row["label"] or "",
                )
            )
        return chains

    # ---------------------------------------------------------------
    # Thresholds
    # ---------------------------------------------------------------

    def create_threshold(self, threshold: Threshold) -> Threshold:
        """Insert a threshold and its approvers.

        Raises:
            DoaStorageError: If the threshold_id is already taken.
        """
        columns = ", ".join(_THRESHOLD_FIELDS)
        placeholders = ", ".join("?" for _ in range(len(_THRESHOLD_FIELDS) + 2))
        try:
            cursor = self._conn.execute(
                f"INSERT INTO thresholds ({columns}, created_at, updated_at) "
                f"VALUES ({placeholders})",
                (
                    *(getattr(threshold, name) for name in _THRESHOLD_FIELDS),
                    threshold.created_at.isoformat(),
                    threshold.updated_at.isoformat(),
                ),
            )
            pk = int(cursor.lastrowid)  # type: ignore[arg-type]
            self._insert_threshold_approvers(pk, threshold.approvers)
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise DoaStorageError(f"Threshold already exists: {threshold.threshold_id}") from exc
        threshold.id = pk
        return threshold

    def get_threshold(self, pk: int) -> Threshold | None:
        """Fetch a threshold by primary key, or None."""
        row = self._conn.execute("SELECT * FROM thresholds WHERE id = ?", (pk,)).fetchone()
        if row is None:
            return None
        threshold = self._row_to_threshold(row)
        threshold.approvers = self._approvers_by_threshold().get(pk, [])
        return threshold

    def get_thresholds(self) -> list[Threshold]:
        """Fetch all thresholds with approvers, in display order."""
        rows = self._conn.execute(
            "SELECT * FROM thresholds ORDER BY sort_order, id"
        ).fetchall()
        chains = self._approvers_by_threshold()
        thresholds = []
        for row in rows:
            threshold = self._row_to_threshold(row)
            threshold.approvers = chains.get(threshold.id, [])  # type: ignore[arg-type]
            thresholds.append(threshold)
        return thresholds

    def update_threshold(self, threshold: Threshold) -> Threshold:
        """Update a threshold and replace its approvers.

        Raises:
            DoaStorageError: If the threshold does not exist or its
                threshold_id collides with another one.
        """
        threshold.updated_at = datetime.now()
        assignments = ", ".join(f"{name} = ?" for name in _THRESHOLD_FIELDS)
        try:
            cursor = self._conn.execute(
                f"UPDATE thresholds SET {assignments}, updated_at = ? WHERE id = ?",
                (
                    *(getattr(threshold, name) for name in _THRESHOLD_FIELDS),
                    threshold.updated_at.isoformat(),
                    threshold.id,
                ),
            )
            if cursor.rowcount == 0:
                self._conn.rollback()
                raise DoaStorageError(f"Threshold not found: {threshold.id}")
            self._conn.execute(
                "DELETE FROM threshold_approvers WHERE threshold_id = ?", (threshold.id,)
            )
            self._insert_threshold_approvers(threshold.id, threshold.approvers)  # type: ignore[arg-type]
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            self._conn.rollback()
            raise DoaStorageError(f"Threshold update failed: {threshold.threshold_id}") from exc
        return threshold

    def delete_threshold(self, pk: int) -> bool:
        """Delete a threshold (cascades to its approvers)."""
        cursor = self._conn.execute("DELETE FROM thresholds WHERE id = ?", (pk,))
        self._conn.commit()
        return cursor.rowcount > 0

    def _insert_threshold_approvers(
        self, pk: int, approvers: list[ThresholdApprover]
    ) -> None:
        for position, approver in enumerate(approvers):
            role_id = self._ensure_role(approver.role)
            self._conn.execute(
                "INSERT INTO threshold_approvers "
                "(threshold_id, role_id, action, label, sort_order) "
                "VALUES (?, ?, ?, ?, ?)",
                (pk, role_id, approver.action, approver.label, approver.sort_order or position),
            )

    def _approvers_by_threshold(self) -> dict[int, list[ThresholdApprover]]:
        rows = self._conn.execute(
            "SELECT ta.threshold_id, r.name AS role_name, ta.action, ta.label, ta.sort_order "
            "FROM threshold_approvers ta "
            "JOIN roles r ON r.id = ta.role_id "
            "ORDER BY ta.threshold_id, ta.sort_order, ta.id"
        ).fetchall()
        chains: dict[int, list[ThresholdApprover]] = {}
        for row in rows:
            chains.setdefault(row["threshold_id"], []).append(
                ThresholdApprover(
                    role=row["role_name"],
                    action=row["action"],
                    label=row["label"] or "Approve",
                    sort_order=row["sort_order"],
                )
            )
        return chains

    # ---------------------------------------------------------------
    # Users
    # ---------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user.

        Raises:
            DoaStorageError: If a user with the same email exists.
        """
        try:
            cursor = self._conn.execute(
                "INSERT INTO users "
                "(email, display_name, role, is_active, last_login_at, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    user.email,
                    user.display_name,
                    user.role.value,
                    int(user.is_active),
                    user.last_login_at.isoformat() if user.last_login_at else None,
                    user.created_at.isoformat(),
                    user.updated_at.isoformat(),
                ),
            )
            self._conn.commit()
        except sqlite3.IntegrityError as exc:
            raise DoaStorageError(f"User already exists: {user.email}") from exc
        user.id = cursor.lastrowid
        return user

    def get_user(self, user_id: int) -> User | None:
        """Fetch a user by ID, or None."""
        row = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> User | None:
        """Fetch a user by email (case-insensitive), or None."""
        row = self._conn.execute(
            "SELECT * FROM users WHERE lower(email) = lower(?)", (email,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        """Fetch all users, newest first."""
        rows = self._conn.execute(
            "SELECT * FROM users ORDER BY created_at DESC, id DESC"
        ).fetchall()
        return [self._row_to_user(r) for r in rows]

    def update_user_role(self, user_id: int, role: UserRole) -> User:
        """Change a user's access level.

        Raises:
            DoaStorageError: If the user does not exist.
        """
        return self._update_user(user_id, "role = ?", role.value)

    def set_user_active(self, user_id: int, is_active: bool) -> User:
        """Enable or disable a user.

        Raises:
            DoaStorageError: If the user does not exist.
        """
        return self._update_user(user_id, "is_active = ?", int(is_active))

    def delete_user(self, user_id: int) -> bool:
        """Delete a user by ID. Returns True if deleted."""
        cursor = self._conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    def _update_user(self, user_id: int, assignment: str, value: Any) -> User:
        cursor = self._conn.execute(
            f"UPDATE users SET {assignment}, updated_at = ? WHERE id = ?",
            (value, datetime.now().isoformat(), user_id),
        )
        if cursor.rowcount == 0:
            raise DoaStorageError(f"User not found: {user_id}")
        self._conn.commit()
        return self.get_user(user_id)  # type: ignore[return-value]

    # ---------------------------------------------------------------
    # Settings
    # ---------------------------------------------------------------

    def get_setting(self, key: str) -> AppSetting | None:
        """Fetch a setting by key, or None."""
        row = self._conn.execute(
            "SELECT * FROM app_settings WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_setting(row)

    def get_all_settings(self) -> list[AppSetting]:
        """Fetch all settings ordered by key."""
        rows = self._conn.execute("SELECT * FROM app_settings ORDER BY key").fetchall()
        return [self._row_to_setting(r) for r in rows]

    def set_setting(self, key: str, value: Any) -> AppSetting:
        """Insert or replace a JSON-valued setting."""
        setting = AppSetting(key=key, value=value)
        self._conn.execute(
            "INSERT INTO app_settings (key, value_json, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json, "
            "updated_at = excluded.updated_at",
            (key, json.dumps(value), setting.updated_at.isoformat()),
        )
        self._conn.commit()
        return setting

    # ---------------------------------------------------------------
    # Row converters
    # ---------------------------------------------------------------

    @staticmethod
    def _row_to_role(row: sqlite3.Row) -> Role:
        return Role(
            id=row["id"],
            name=row["name"],
            sort_order=row["sort_order"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_country(row: sqlite3.Row) -> Country:
        return Country(
            id=row["id"],
            name=row["name"],
            risk_level=RiskLevel(row["risk_level"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_browse_item(row: sqlite3.Row) -> BrowseItem:
        return BrowseItem(
            id=row["id"],
            code=row["code"],
            parent_code=row["parent_code"],
            title=row["title"],
            description=row["description"],
            comments=row["comments"],
            function_name=row["function_name"],
            sort_order=row["sort_order"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_threshold(row: sqlite3.Row) -> Threshold:
        return Threshold(
            id=row["id"],
            **{name: row[name] for name in _THRESHOLD_FIELDS},
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        last_login = row["last_login_at"]
        return User(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            role=UserRole(row["role"]),
            is_active=bool(row["is_active"]),
            last_login_at=datetime.fromisoformat(last_login) if last_login else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_setting(row: sqlite3.Row) -> AppSetting:
        return AppSetting(
            key=row["key"],
            value=json.loads(row["value_json"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
