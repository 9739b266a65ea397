"""SQLite access for the assistant: cached client, query execution, schema."""
from __future__ import annotations

import argparse
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from config import AppConfiguration

logger = logging.getLogger("chat_sql.db")

PRODUCTS_DDL = """CREATE TABLE products (
id integer PRIMARY KEY AUTOINCREMENT NOT NULL,
name text NOT NULL,
category text NOT NULL,
price real NOT NULL,
stock integer DEFAULT 0 NOT NULL,
created_at text DEFAULT CURRENT_TIMESTAMP
)"""

SALES_DDL = """CREATE TABLE sales (
id integer PRIMARY KEY AUTOINCREMENT NOT NULL,
product_id integer NOT NULL,
quantity integer NOT NULL,
total_amount real NOT NULL,
sale_date text DEFAULT CURRENT_TIMESTAMP,
customer_name text NOT NULL,
region text NOT NULL,
FOREIGN KEY (product_id) REFERENCES products(id) ON UPDATE no action ON DELETE no action
)"""

TABLE_DDLS: Tuple[str, ...] = (PRODUCTS_DDL, SALES_DDL)

SAMPLE_PRODUCTS = [
    ("Wireless Mouse", "Electronics", 24.99, 120),
    ("Mechanical Keyboard", "Electronics", 89.5, 45),
    ("Standing Desk", "Furniture", 349.0, 12),
    ("Office Chair", "Furniture", 199.99, 30),
    ("Notebook A5", "Stationery", 3.49, 500),
]

# (product_id, quantity, customer_name, region, sale_date)
SAMPLE_SALES = [
    (1, 2, "Alice Johnson", "North", "2025-01-05 10:15:00"),
    (2, 1, "Bob Smith", "South", "2025-01-06 14:02:00"),
    (3, 1, "Carla Gomez", "West", "2025-01-08 09:45:00"),
    (5, 10, "Dan Lee", "East", "2025-01-09 16:30:00"),
    (4, 2, "Alice Johnson", "North", "2025-01-11 11:20:00"),
    (1, 3, "Eve Martin", "West", "2025-01-12 13:05:00"),
]

_STORAGE_CLASSES = (
    (bool, "INTEGER"),
    (int, "INTEGER"),
    (float, "REAL"),
    (str, "TEXT"),
    (bytes, "BLOB"),
)

_client_lock = threading.Lock()
_cached_client: Optional[sqlite3.Connection] = None
_cached_url: Optional[str] = None


def get_schema() -> str:
    return "\n\n".join(TABLE_DDLS)


def _resolve_path(url: str) -> Path:
    if url.startswith("sqlite:///"):
        url = url[len("sqlite:///"):]
    elif url.startswith("file:"):
        url = url[len("file:"):]
    elif "://" in url:
        raise RuntimeError(f"Unsupported database URL: {url}. Only local SQLite files are supported.")
    return Path(url).expanduser().resolve()


def _connect(url: str, read_only: bool) -> sqlite3.Connection:
    path = _resolve_path(url)
    if read_only:
        target = f"{path.as_uri()}?mode=ro"
        return sqlite3.connect(target, uri=True, check_same_thread=False)
    return sqlite3.connect(str(path), check_same_thread=False)


def get_client(app_config: AppConfiguration) -> sqlite3.Connection:
    """Return the shared connection, opening it on first use or when the URL changes."""
    global _cached_client, _cached_url
    url = app_config.database_url
    if not url:
        raise RuntimeError("DATABASE_URL is not set. Configure it in your environment.")
    with _client_lock:
        if _cached_client is not None and _cached_url == url:
            return _cached_client
        if _cached_client is not None:
            _cached_client.close()
        _cached_client = _connect(url, app_config.read_only)
        _cached_url = url
        logger.info("Opened database %s (read_only=%s)", url, app_config.read_only)
        return _cached_client


def reset_client() -> None:
    global _cached_client, _cached_url
    with _client_lock:
        if _cached_client is not None:
            _cached_client.close()
        _cached_client = None
        _cached_url = None


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def _column_types(rows: List[Tuple[Any, ...]], width: int) -> List[str]:
    types: List[str] = []
    for idx in range(width):
        found = ''
        for row in rows:
            value = row[idx]
            if value is None:
                continue
            for py_type, storage in _STORAGE_CLASSES:
                if isinstance(value, py_type):
                    found = storage
                    break
            break
        types.append(found)
    return types


def execute_query(conn: sqlite3.Connection, sql: str) -> Dict[str, Any]:
    with _client_lock:
        cur = conn.cursor()
        try:
            cur.execute(sql)
            raw_rows = cur.fetchall() if cur.description else []
            columns = [d[0] for d in cur.description] if cur.description else []
            rows_affected = cur.rowcount if cur.rowcount and cur.rowcount > 0 else 0
            last_rowid = cur.lastrowid if rows_affected else None
        finally:
            cur.close()
    return {
        "columns": columns,
        "rows": [[_jsonable(v) for v in row] for row in raw_rows],
        "columnTypes": _column_types(raw_rows, len(columns)),
        "rowsAffected": rows_affected,
        "lastInsertRowid": last_rowid,
    }


def init_schema(path: str, seed: bool = False) -> None:
    """Create the products and sales tables (and optionally sample rows) in a local file."""
    conn = sqlite3.connect(str(_resolve_path(path)))
    try:
        for ddl in TABLE_DDLS:
            conn.execute(ddl.replace("CREATE TABLE", "CREATE TABLE IF NOT EXISTS", 1))
        if seed:
            existing = conn.execute("SELECT COUNT(*) FROM products").fetchone()[0]
            if existing:
                logger.info("Skipping seed, products already has %s rows", existing)
            else:
                conn.executemany(
                    "INSERT INTO products (name, category, price, stock) VALUES (?, ?, ?, ?)",
                    SAMPLE_PRODUCTS,
                )
                prices = {row[0]: row[1] for row in conn.execute("SELECT id, price FROM products")}
                conn.executemany(
                    "INSERT INTO sales (product_id, quantity, total_amount, customer_name, region, sale_date) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    [
                        (pid, qty, round(prices[pid] * qty, 2), customer, region, sold_at)
                        for pid, qty, customer, region, sold_at in SAMPLE_SALES
                    ],
                )
        conn.commit()
    finally:
        conn.close()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="SQL assistant database helpers")
    sub = parser.add_subparsers(dest="command", required=True)
    init = sub.add_parser("init", help="create the products and sales tables")
    init.add_argument("path", help="SQLite database file")
    init.add_argument("--seed", action="store_true", help="insert sample rows")
    args = parser.parse_args(argv)
    if args.command == "init":
        init_schema(args.path, seed=args.seed)
        print(f"Initialized {args.path}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
