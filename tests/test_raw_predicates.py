from __future__ import annotations

from docstore_sqlite.query import prepare_raw_predicate, rewrite_expression
from docstore_sqlite.query.raw import tokenize


def test_where_prefix_added_once():
    assert prepare_raw_predicate("name = ?").startswith("WHERE ")
    assert prepare_raw_predicate("where name = ?").count("WHERE") == 0
    assert prepare_raw_predicate("WHERE name = ?").count("WHERE") == 1


def test_fields_rewritten_to_body_extraction():
    sql = prepare_raw_predicate("name = ? OR age > ?")
    assert sql == (
        "WHERE json_extract(data, '$.name') = ? OR "
        "CAST(json_extract(data, '$.age') AS REAL) > ?"
    )


def test_keyword_comparisons_rewritten():
    sql = prepare_raw_predicate("email IS NOT NULL AND name LIKE ?")
    assert "json_extract(data, '$.email') IS NOT NULL" in sql
    assert "json_extract(data, '$.name') LIKE ?" in sql


def test_string_literals_untouched():
    sql = prepare_raw_predicate("status = 'age > 3'")
    assert sql == "WHERE json_extract(data, '$.status') = 'age > 3'"


def test_dotted_field():
    assert "'$.address.city'" in prepare_raw_predicate("address.city = ?")


def test_clause_with_json_extract_left_alone():
    clause = "WHERE json_extract(data, '$.a') = ?"
    assert prepare_raw_predicate(clause) == clause


def test_clause_with_system_column_left_alone():
    assert prepare_raw_predicate("id = ?") == "WHERE id = ?"


def test_function_calls_not_rewritten():
    sql = prepare_raw_predicate("lower(name) = ?")
    assert sql.startswith("WHERE lower(")


def test_rewrite_expression_for_triggers():
    assert rewrite_expression("age >= 18") == "json_extract(NEW.data, '$.age') >= 18"
    assert rewrite_expression("length(email) > 3 AND _id IS NOT NULL") == (
        "length(json_extract(NEW.data, '$.email')) > 3 AND NEW.id IS NOT NULL"
    )


def test_rewrite_skips_row_aliases():
    assert rewrite_expression("NEW.id IS NOT NULL") == "NEW.id IS NOT NULL"


def test_tokenize_keeps_escaped_quotes_together():
    tokens = tokenize("a = 'it''s'")
    assert [t.kind for t in tokens if t.kind != "space"] == ["ident", "op", "string"]
