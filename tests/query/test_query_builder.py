"""Tests for the fluent query builder and its SQLGlot compilation."""

import pytest

from sideorm.exceptions import ArgumentError
from sideorm.query import Raw


def seed_users(db):
    db.table("users").insert(
        [
            {"name": "Ada", "votes": 10},
            {"name": "Bob", "votes": 20},
            {"name": "Cy", "votes": 30},
        ]
    )


def test_basic_where_compiles_to_placeholders(db):
    """Values are bound, never inlined."""
    query = db.table("users").where("votes", ">", 100).or_where("name", "Ada")

    assert query.to_sql() == "SELECT * FROM users WHERE votes > ? OR name = ?"
    assert query.get_bindings() == [100, "Ada"]


def test_nested_where_is_parenthesized(db):
    query = db.table("users").where("votes", ">", 1).where(lambda q: q.where("name", "a").or_where("name", "b"))

    assert query.to_sql() == "SELECT * FROM users WHERE votes > ? AND (name = ? OR name = ?)"
    assert query.get_bindings() == [1, "a", "b"]


def test_dict_where_becomes_nested_equalities(db):
    query = db.table("users").where({"name": "Ada", "votes": 10})

    assert query.get_bindings() == ["Ada", 10]
    assert "name = ?" in query.to_sql()
    assert "votes = ?" in query.to_sql()


def test_empty_where_in_is_always_false(db):
    """Empty IN compiles to a false predicate, empty NOT IN to a true one."""
    assert db.table("users").where_in("id", []).to_sql() == "SELECT * FROM users WHERE 0 = 1"
    assert db.table("users").where_not_in("id", []).to_sql() == "SELECT * FROM users WHERE 1 = 1"


def test_where_in_binds_every_value(db):
    query = db.table("users").where_in("id", [1, 2, 3])

    assert query.to_sql() == "SELECT * FROM users WHERE id IN (?, ?, ?)"
    assert query.get_bindings() == [1, 2, 3]


def test_where_null_value_switches_to_null_check(db):
    assert "deleted_at IS NULL" in db.table("posts").where("deleted_at", None).to_sql()
    assert db.table("posts").where("deleted_at", None).get_bindings() == []


def test_unknown_operator_raises(db):
    with pytest.raises(ArgumentError, match="Illegal operator"):
        db.table("users").where("votes", "~~", 1)


def test_operator_without_value_raises(db):
    with pytest.raises(ArgumentError):
        db.table("users").where("votes", ">")


def test_invalid_binding_type_raises(db):
    with pytest.raises(ArgumentError, match="Invalid binding type"):
        db.table("users").add_binding(1, "bogus")


def test_copy_does_not_share_wheres(db):
    """Copies get their own where list, join list and bindings."""
    original = db.table("users").where("votes", ">", 1)
    clone = original.copy().where("name", "Ada").join("posts", "users.id", "=", "posts.user_id")

    assert len(original.wheres) == 1
    assert len(clone.wheres) == 2
    assert original.joins == []


def test_qualified_columns_and_aliases(db):
    query = db.table("users").select("users.name", "users.votes as score")

    assert query.to_sql() == "SELECT users.name, users.votes AS score FROM users"


def test_insert_and_read_back(db):
    assert db.table("users").insert({"name": "Ada", "votes": 10}) == 1

    row = db.table("users").where("name", "Ada").first()
    assert row["votes"] == 10
    assert row["id"] == 1


def test_insert_rows_with_different_columns(db):
    """Columns missing from a row are inserted as NULL."""
    db.table("users").insert([{"name": "Ada"}, {"votes": 3}])

    rows = db.table("users").order_by("id").get(["name", "votes"])
    assert rows == [{"name": "Ada", "votes": None}, {"name": None, "votes": 3}]


def test_insert_get_id_returns_generated_key(db):
    seed_users(db)

    new_id = db.table("users").insert_get_id({"name": "Dee"})

    assert new_id == 4
    assert db.table("users").where("id", new_id).value("name") == "Dee"


def test_aggregates(db):
    seed_users(db)
    users = db.table("users")

    assert users.count() == 3
    assert users.sum("votes") == 60
    assert users.max("votes") == 30
    assert users.min("votes") == 10
    assert users.avg("votes") == 20
    assert db.table("users").where("votes", ">", 100).sum("votes") == 0


def test_exists(db):
    seed_users(db)

    assert db.table("users").where("name", "Ada").exists() is True
    assert db.table("users").where("name", "Zed").exists() is False


def test_pluck_with_key(db):
    seed_users(db)

    assert db.table("users").order_by("name").pluck("name") == ["Ada", "Bob", "Cy"]
    assert db.table("users").pluck("votes", "name") == {"Ada": 10, "Bob": 20, "Cy": 30}


def test_ordering_and_paging(db):
    seed_users(db)

    page = db.table("users").order_by_desc("votes").for_page(2, 2).pluck("name")
    assert page == ["Ada"]

    top = db.table("users").latest("votes").take(1).pluck("name")
    assert top == ["Cy"]


def test_where_between_and_not_between(db):
    seed_users(db)

    assert db.table("users").where_between("votes", [15, 25]).pluck("name") == ["Bob"]
    assert sorted(db.table("users").where_not_between("votes", [15, 25]).pluck("name")) == ["Ada", "Cy"]


def test_where_between_requires_two_values(db):
    with pytest.raises(ArgumentError):
        db.table("users").where_between("votes", [1])


def test_where_in_sub_query(db):
    seed_users(db)
    db.table("posts").insert({"user_id": 2, "title": "Hello"})

    names = db.table("users").where_in("id", lambda q: q.from_("posts").select("user_id")).pluck("name")

    assert names == ["Bob"]


def test_where_exists_correlated(db):
    seed_users(db)
    db.table("posts").insert({"user_id": 3, "title": "Hello"})

    names = (
        db.table("users")
        .where_exists(lambda q: q.from_("posts").select(Raw("1")).where_column("posts.user_id", "users.id"))
        .pluck("name")
    )

    assert names == ["Cy"]


def test_join_selects_from_both_tables(db):
    seed_users(db)
    db.table("posts").insert([{"user_id": 1, "title": "First"}, {"user_id": 1, "title": "Second"}])

    rows = (
        db.table("users")
        .join("posts", "users.id", "=", "posts.user_id")
        .select("users.name", "posts.title")
        .order_by("posts.title")
        .get()
    )

    assert rows == [{"name": "Ada", "title": "First"}, {"name": "Ada", "title": "Second"}]


def test_left_join_keeps_unmatched_rows(db):
    seed_users(db)
    db.table("posts").insert({"user_id": 1, "title": "First"})

    rows = db.table("users").left_join("posts", "users.id", "=", "posts.user_id").select("users.name").get()

    assert len(rows) == 3


def test_group_by_and_having(db):
    db.table("posts").insert(
        [
            {"user_id": 1, "title": "a"},
            {"user_id": 1, "title": "b"},
            {"user_id": 2, "title": "c"},
        ]
    )

    rows = (
        db.table("posts")
        .select("user_id")
        .select_raw("count(*) AS total")
        .group_by("user_id")
        .having_raw("count(*) > ?", [1])
        .get()
    )

    assert rows == [{"user_id": 1, "total": 2}]


def test_update_returns_affected_rows(db):
    seed_users(db)

    assert db.table("users").where("votes", ">=", 20).update({"name": "Many"}) == 2
    assert db.table("users").where("name", "Many").count() == 2


def test_increment_and_decrement(db):
    seed_users(db)

    db.table("users").where("name", "Ada").increment("votes", 5)
    db.table("users").where("name", "Bob").decrement("votes")

    assert db.table("users").pluck("votes", "name") == {"Ada": 15, "Bob": 19, "Cy": 30}


def test_increment_rejects_non_numeric(db):
    with pytest.raises(ArgumentError):
        db.table("users").increment("votes", "5")


def test_delete_and_truncate(db):
    seed_users(db)

    assert db.table("users").where("name", "Ada").delete() == 1
    assert db.table("users").count() == 2

    db.table("users").truncate()
    assert db.table("users").count() == 0


def test_raw_where(db):
    seed_users(db)

    assert db.table("users").where_raw("votes % ? = 0", [20]).pluck("name") == ["Bob"]
