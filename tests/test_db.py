import sqlite3

import pytest

import db
from config import AppConfiguration


def test_missing_database_url_raises():
    with pytest.raises(RuntimeError, match="DATABASE_URL is not set"):
        db.get_client(AppConfiguration())


@pytest.mark.parametrize("url", ["libsql://example.turso.io", "https://example.com/db"])
def test_remote_urls_are_rejected(url):
    with pytest.raises(RuntimeError, match="Unsupported database URL"):
        db.get_client(AppConfiguration(database_url=url))


def test_client_is_cached_per_url(app_config, tmp_path):
    first = db.get_client(app_config)
    assert db.get_client(app_config) is first

    other = tmp_path / "other.db"
    db.init_schema(str(other))
    second = db.get_client(AppConfiguration(database_url=f"file:{other}"))
    assert second is not first


def test_execute_query_returns_columns_rows_and_types(app_config):
    conn = db.get_client(app_config)
    result = db.execute_query(conn, "SELECT id, name, price, NULL AS note FROM products ORDER BY id LIMIT 2")
    assert result["columns"] == ["id", "name", "price", "note"]
    assert result["rows"] == [[1, "Wireless Mouse", 24.99, None], [2, "Mechanical Keyboard", 89.5, None]]
    assert result["columnTypes"] == ["INTEGER", "TEXT", "REAL", ""]
    assert result["rowsAffected"] == 0
    assert result["lastInsertRowid"] is None


def test_blobs_are_hex_encoded(app_config):
    conn = db.get_client(app_config)
    result = db.execute_query(conn, "SELECT X'CAFE' AS payload")
    assert result["rows"] == [["cafe"]]
    assert result["columnTypes"] == ["BLOB"]


def test_read_only_connection_refuses_writes(app_config):
    conn = db.get_client(app_config)
    with pytest.raises(sqlite3.OperationalError):
        db.execute_query(conn, "DELETE FROM sales")


def test_seeded_sales_reference_products(sample_db):
    conn = sqlite3.connect(str(sample_db))
    try:
        orphans = conn.execute(
            "SELECT COUNT(*) FROM sales LEFT JOIN products ON products.id = sales.product_id "
            "WHERE products.id IS NULL"
        ).fetchone()[0]
        totals = conn.execute(
            "SELECT sales.total_amount, products.price * sales.quantity FROM sales "
            "JOIN products ON products.id = sales.product_id"
        ).fetchall()
    finally:
        conn.close()
    assert orphans == 0
    assert all(total == pytest.approx(expected) for total, expected in totals)


def test_init_schema_is_idempotent(sample_db):
    db.init_schema(str(sample_db), seed=True)
    conn = sqlite3.connect(str(sample_db))
    try:
        count = conn.execute("SELECT COUNT(*) FROM products").fetchone()[0]
    finally:
        conn.close()
    assert count == len(db.SAMPLE_PRODUCTS)


def test_schema_text_lists_both_tables():
    schema = db.get_schema()
    assert "CREATE TABLE products (" in schema
    assert "CREATE TABLE sales (" in schema
    assert "FOREIGN KEY (product_id) REFERENCES products(id)" in schema


def test_cli_init(tmp_path, capsys):
    path = tmp_path / "cli.db"
    db.main(["init", str(path), "--seed"])
    assert "Initialized" in capsys.readouterr().out
    conn = sqlite3.connect(str(path))
    try:
        assert conn.execute("SELECT COUNT(*) FROM sales").fetchone()[0] == len(db.SAMPLE_SALES)
    finally:
        conn.close()
