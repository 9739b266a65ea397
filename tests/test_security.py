import pytest

from utils.security import SQLValidationError, validate_and_prepare_query


@pytest.mark.parametrize("query", [
    "DELETE FROM sales",
    "UPDATE products SET price = 0",
    "insert into products (name) values ('x')",
    "DROP TABLE sales",
    "PRAGMA table_info(sales)",
    "ATTACH DATABASE 'other.db' AS other",
    "VACUUM",
    "EXPLAIN SELECT * FROM sales",
])
def test_rejects_statements_that_are_not_select(query):
    with pytest.raises(SQLValidationError, match="Only SELECT queries are permitted."):
        validate_and_prepare_query(query)


@pytest.mark.parametrize("query, table", [
    ("SELECT * FROM users", "users"),
    ("SELECT * FROM sales JOIN customers ON customers.id = sales.id", "customers"),
    ("SELECT name FROM sqlite_master", "sqlite_master"),
    ('SELECT * FROM "secrets"', "secrets"),
    ("SELECT * FROM main.sales", "main"),
])
def test_rejects_unlisted_tables(query, table):
    with pytest.raises(SQLValidationError, match=f"disallowed table referenced: {table}$"):
        validate_and_prepare_query(query)


@pytest.mark.parametrize("query", [
    "SELECT * FROM sales;",
    "SELECT 1; DROP TABLE sales",
    "SELECT ';' FROM products",
])
def test_rejects_any_semicolon(query):
    with pytest.raises(SQLValidationError, match="semicolon-free"):
        validate_and_prepare_query(query)


@pytest.mark.parametrize("query", [
    "SELECT * FROM sales WHERE region = 'North' OR DROP",
    "select * from products where note = 'delete me'",
    "WITH x AS (SELECT 1) CREATE TABLE y AS SELECT * FROM x",
])
def test_rejects_forbidden_keywords(query):
    with pytest.raises(SQLValidationError, match="forbidden operation"):
        validate_and_prepare_query(query)


def test_appends_default_row_cap():
    assert validate_and_prepare_query("SELECT * FROM sales") == "SELECT * FROM sales LIMIT 1000"


def test_trims_before_appending_cap():
    assert validate_and_prepare_query("  select * from Products\n") == "select * from Products LIMIT 1000"


def test_keeps_existing_limit():
    query = "SELECT region, SUM(total_amount) FROM sales GROUP BY region limit 5"
    assert validate_and_prepare_query(query) == query


def test_column_names_containing_keywords_are_allowed():
    query = "SELECT name, created_at FROM products ORDER BY created_at DESC"
    assert validate_and_prepare_query(query) == query + " LIMIT 1000"


def test_cte_names_are_allowed():
    query = (
        "WITH totals AS (SELECT product_id, SUM(quantity) AS qty FROM sales GROUP BY product_id) "
        "SELECT products.name, totals.qty FROM totals JOIN products ON products.id = totals.product_id"
    )
    assert validate_and_prepare_query(query).endswith(" LIMIT 1000")


def test_custom_allow_list_and_row_limit():
    assert validate_and_prepare_query(
        "SELECT * FROM orders", allowed_tables=["orders"], row_limit=50
    ) == "SELECT * FROM orders LIMIT 50"
    with pytest.raises(SQLValidationError):
        validate_and_prepare_query("SELECT * FROM sales", allowed_tables=["orders"])


def test_validation_error_is_a_value_error():
    with pytest.raises(ValueError):
        validate_and_prepare_query("")


@pytest.mark.parametrize("query", [
    "SELECT name FROM/**/sqlite_master",
    "SELECT * FROM products JOIN/**/sqlite_master",
    "SELECT * FROM sales -- LIMIT 1000",
    "SELECT * FROM sales /* trailing",
])
def test_rejects_comments(query):
    with pytest.raises(SQLValidationError, match="comments are not allowed"):
        validate_and_prepare_query(query)


@pytest.mark.parametrize("query", [
    "SELECT * FROM products, sqlite_master",
    "SELECT * FROM products p, sales s, sqlite_master m",
    "SELECT * FROM (sqlite_master)",
    "SELECT * FROM (SELECT * FROM products) AS p, sqlite_master",
    "SELECT * FROM products JOIN sales ON sales.product_id = products.id, sqlite_master",
    "SELECT * FROM products WHERE id IN (SELECT rowid FROM sqlite_master)",
    "WITH a AS (SELECT 1) SELECT name FROM sqlite_master WINDOW w AS (), sqlite_master AS ()",
    "SELECT name, SUM(price) OVER w FROM products, sqlite_master WINDOW w AS (ORDER BY id)",
])
def test_rejects_unlisted_tables_in_any_from_position(query):
    with pytest.raises(SQLValidationError, match="disallowed table referenced: sqlite_master$"):
        validate_and_prepare_query(query)


def test_rejects_unterminated_literal():
    with pytest.raises(SQLValidationError, match="Unterminated"):
        validate_and_prepare_query("SELECT * FROM sales WHERE region = 'North")


@pytest.mark.parametrize("query", [
    "SELECT * FROM sales WHERE customer_name = 'limit'",
    "SELECT * FROM sales WHERE customer_name = 'a -- b'",
    "SELECT * FROM (SELECT * FROM sales LIMIT 5000000)",
    "SELECT p.name, s.quantity FROM products p, sales s WHERE s.product_id = p.id",
    "SELECT * FROM (products JOIN sales ON sales.product_id = products.id)",
    "WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n WHERE x < 3) SELECT x FROM n",
    "WITH a AS (SELECT 1), b AS MATERIALIZED (SELECT * FROM a) SELECT * FROM b",
])
def test_outer_query_without_limit_gets_row_cap(query):
    assert validate_and_prepare_query(query) == query + " LIMIT 1000"
