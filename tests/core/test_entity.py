"""Tests for the active-record entity lifecycle."""

from datetime import datetime

import pytest

from sideorm import Entity, relation
from sideorm.exceptions import (
    ArgumentError,
    ConfigurationError,
    EntityNotFoundError,
    InvalidRelationError,
    MassAssignmentError,
    RelationNotFoundError,
)
from tests.entities import Comment, Post, User
from tests.utils import count_queries, table_rows


class GuardedUser(Entity):
    table = "users"
    fillable = ["name"]


class LockedUser(Entity):
    table = "users"


class OpenUser(Entity):
    table = "users"
    guarded = ["votes"]


class StrictUser(Entity):
    table = "users"
    fillable = ["name", "votes"]
    dirty_comparison = "strict"


class PublicUser(Entity):
    table = "users"
    hidden = ["email"]
    appends = ["display_name"]

    def get_display_name_attribute(self, value):
        return f"{self.get_attribute('name')} ({self.get_attribute('votes')})"

    def get_name_attribute(self, value):
        return value.upper() if value else value


class Broken(Entity):
    @relation
    def owner(self):
        return 42


class NoKey(Entity):
    primary_key = ""


# Mass assignment


def test_fill_only_sets_fillable_keys():
    """A guarded entity with fillable=["name"] drops other keys."""
    user = GuardedUser().fill({"name": "x", "role": "admin"})

    assert user["name"] == "x"
    assert "role" not in user


def test_fill_with_only_rejected_keys_raises():
    with pytest.raises(MassAssignmentError) as exc_info:
        GuardedUser().fill({"role": "admin"})

    assert exc_info.value.key == "role"


def test_totally_guarded_entity_rejects_fill():
    with pytest.raises(MassAssignmentError):
        LockedUser(name="Ada")


def test_force_fill_and_unguarded_bypass_guarding():
    assert LockedUser().force_fill({"name": "Ada"})["name"] == "Ada"

    with LockedUser.unguarded():
        assert LockedUser(name="Bob")["name"] == "Bob"

    with pytest.raises(MassAssignmentError):
        LockedUser(name="Cy")


def test_guarded_list_without_fillable():
    user = OpenUser().fill({"name": "Ada", "votes": 99})

    assert user["name"] == "Ada"
    assert "votes" not in user


def test_fill_strips_table_prefix():
    assert GuardedUser().fill({"users.name": "Ada"})["name"] == "Ada"


def test_set_mutator_is_applied_on_fill():
    assert User(email="ADA@Example.COM")["email"] == "ada@example.com"


# Persistence


def test_create_assigns_key_and_timestamps(db):
    user = User.create(name="Ada", votes=3)

    assert user.exists is True
    assert user.get_key() == 1
    assert isinstance(user["created_at"], datetime)
    assert user["created_at"] == user["updated_at"]
    assert user.is_dirty() is False


def test_save_without_changes_issues_no_queries(db):
    """Hydrated then saved without mutation: zero statements."""
    User.create(name="Ada", votes=3)
    user = User.find(1)

    with count_queries(db) as log:
        assert user.save() is True

    assert log == []


def test_update_writes_only_dirty_columns(db):
    User.create(name="Ada", email="ada@example.com", votes=3)
    user = User.find(1)

    user["name"] = "Ada Lovelace"
    with count_queries(db) as log:
        user.save()

    assert len(log) == 1
    assert log[0]["query"].startswith("UPDATE users SET name = ?")
    assert "email" not in log[0]["query"]
    assert log[0]["bindings"][0] == "Ada Lovelace"
    assert User.find(1)["name"] == "Ada Lovelace"


def test_numeric_string_is_not_dirty_by_default(db):
    User.create(name="Ada", votes=3)
    user = User.find(1)

    user["votes"] = "3"

    assert user.is_dirty() is False


def test_strict_dirty_comparison(db):
    StrictUser.create(name="Ada", votes=3)
    user = StrictUser.find(1)

    user["votes"] = "3"

    assert user.get_dirty() == {"votes": "3"}


def test_update_on_unsaved_entity_returns_false(db):
    assert User(name="Ada").update(name="Bob") is False


def test_update_fills_and_saves(db):
    user = User.create(name="Ada")

    assert user.update(votes=7) is True
    assert User.find(user.get_key())["votes"] == 7


def test_find_many_and_find_or_fail(db):
    User.create(name="Ada")
    User.create(name="Bob")

    assert [user["name"] for user in User.find([1, 2])] == ["Ada", "Bob"]
    assert User.find(3) is None

    with pytest.raises(EntityNotFoundError) as exc_info:
        User.find_or_fail(3)
    assert exc_info.value.entity == "User"

    with pytest.raises(EntityNotFoundError):
        User.find_or_fail([1, 3])


def test_find_or_new_returns_unsaved_instance(db):
    user = User.find_or_new(42)

    assert user.exists is False
    assert user.get_key() is None


def test_first_or_create_and_update_or_create(db):
    first = User.first_or_create({"name": "Ada"}, {"votes": 5})
    again = User.first_or_create({"name": "Ada"}, {"votes": 9})

    assert first.get_key() == again.get_key()
    assert again["votes"] == 5

    updated = User.update_or_create({"name": "Ada"}, {"votes": 11})
    created = User.update_or_create({"name": "Bob"}, {"votes": 1})

    assert updated.get_key() == first.get_key()
    assert User.find(first.get_key())["votes"] == 11
    assert created.exists is True
    assert User.query().count() == 2


def test_delete_removes_row(db):
    user = User.create(name="Ada")

    assert user.delete() is True
    assert user.exists is False
    assert User.query().count() == 0


def test_delete_unsaved_entity_returns_none(db):
    assert User(name="Ada").delete() is None


def test_delete_without_primary_key_raises():
    with pytest.raises(ArgumentError):
        NoKey().delete()


def test_destroy_counts_deleted(db):
    for name in ("Ada", "Bob", "Cy"):
        User.create(name=name)

    assert User.destroy(1, [2, 99]) == 2
    assert User.all().pluck("name") == ["Cy"]


def test_increment_updates_attribute_and_row(db):
    user = User.create(name="Ada", votes=1)

    user.increment("votes", 4)

    assert user["votes"] == 5
    assert user.is_dirty("votes") is False
    assert User.find(user.get_key())["votes"] == 5

    user.decrement("votes")
    assert User.find(user.get_key())["votes"] == 4


def test_replicate_drops_key_and_timestamps(db):
    user = User.create(name="Ada", votes=2)

    copy = user.replicate()

    assert copy.exists is False
    assert copy.get_key() is None
    assert "created_at" not in copy
    assert copy["votes"] == 2

    copy.save()
    assert User.query().count() == 2


def test_fresh_and_refresh(db):
    user = User.create(name="Ada")
    db.table("users").where("id", user.get_key()).update({"name": "Changed"})

    assert user.fresh()["name"] == "Changed"
    assert user["name"] == "Ada"

    user.refresh()
    assert user["name"] == "Changed"
    assert user.is_dirty() is False


def test_push_saves_loaded_relations(db):
    user = User.create(name="Ada")
    Post.create(user_id=user.get_key(), title="Draft")

    user = User.with_("posts").first()
    user["name"] = "Ada L."
    user.posts[0]["title"] = "Published"

    assert user.push() is True
    assert User.find(1)["name"] == "Ada L."
    assert Post.find(1)["title"] == "Published"


def test_hydrate_marks_entities_as_existing(db):
    users = User.hydrate([{"id": 1, "name": "Ada"}, {"id": 2, "name": "Bob"}])

    assert all(user.exists for user in users)
    assert users.find(2)["name"] == "Bob"
    assert users[0].is_dirty() is False


def test_hydrate_raw(db):
    User.create(name="Ada", votes=10)

    users = User.hydrate_raw("SELECT * FROM users WHERE votes > ?", [5])

    assert users.pluck("name") == ["Ada"]


def test_is_same(db):
    user = User.create(name="Ada")

    assert user.is_same(User.find(1))
    assert not user.is_same(User.create(name="Bob"))
    assert not user.is_same(None)


# Dates and serialization


def test_date_columns_accept_strings(db):
    user = User(name="Ada")
    user["created_at"] = "2024-01-02 03:04:05"
    user.save()

    assert User.find(1)["created_at"] == datetime(2024, 1, 2, 3, 4, 5)


def test_invalid_date_raises():
    with pytest.raises(ArgumentError):
        User()["created_at"] = "not a date"


def test_to_dict_formats_dates(db):
    user = User(name="Ada")
    user["created_at"] = datetime(2024, 1, 2, 3, 4, 5)
    user.save()

    data = User.find(1).to_dict()

    assert data["created_at"] == "2024-01-02 03:04:05"
    assert data["name"] == "Ada"


def test_to_dict_honours_hidden_appends_and_mutators():
    user = PublicUser().force_fill({"name": "ada", "email": "a@b.c", "votes": 3})

    data = user.to_dict()

    assert "email" not in data
    assert data["name"] == "ADA"
    assert data["display_name"] == "ADA (3)"


def test_to_dict_includes_loaded_relations(db):
    user = User.create(name="Ada")
    Post.create(user_id=user.get_key(), title="Hello")

    data = User.with_("posts").first().to_dict()

    assert [post["title"] for post in data["posts"]] == ["Hello"]
    assert '"title": "Hello"' in User.with_("posts").first().to_json()


# Events


def test_lifecycle_events_fire_in_order(db):
    events = []
    for event in ("saving", "creating", "created", "updating", "updated", "saved"):
        User.register_event(event, lambda user, event=event: events.append(event))

    user = User.create(name="Ada")
    assert events == ["saving", "creating", "created", "saved"]

    events.clear()
    user.update(name="Bob")
    assert events == ["saving", "updating", "updated", "saved"]


def test_saving_listener_can_halt_save(db):
    User.saving(lambda user: False)

    user = User(name="Ada")

    assert user.save() is False
    assert user.exists is False
    assert db.table("users").count() == 0


def test_deleting_listener_can_halt_delete(db):
    user = User.create(name="Ada")
    User.deleting(lambda user: False)

    assert user.delete() is False
    assert User.query().count() == 1


def test_observer_methods_are_registered(db):
    class Observer:
        def __init__(self):
            self.seen = []

        def creating(self, user):
            if user["name"] == "Blocked":
                return False
            self.seen.append(("creating", user["name"]))

        def deleted(self, user):
            self.seen.append(("deleted", user["name"]))

    observer = Observer()
    User.observe(observer)

    ada = User.create(name="Ada")
    blocked = User.create(name="Blocked")
    ada.delete()

    assert blocked.exists is False
    assert observer.seen == [("creating", "Ada"), ("deleted", "Ada")]


def test_flush_event_listeners(db):
    User.saving(lambda user: False)
    User.flush_event_listeners()

    assert User(name="Ada").save() is True


def test_registering_events_needs_a_dispatcher():
    with pytest.raises(ConfigurationError):
        User.saving(lambda user: None)


# Relations and contracts


def test_touch_owners_updates_parent_timestamp(db):
    post = Post(title="Hello")
    post["updated_at"] = datetime(2020, 1, 1)
    post.save()

    Comment.create(post_id=post.get_key(), body="Nice")

    assert Post.find(post.get_key())["updated_at"] > datetime(2020, 1, 1)


def test_relation_accessor_must_return_relation():
    with pytest.raises(InvalidRelationError):
        Broken().owner


def test_unknown_relation_raises():
    with pytest.raises(RelationNotFoundError):
        User().related("missing")


def test_relation_results_are_cached(db):
    user = User.create(name="Ada")
    Post.create(user_id=user.get_key(), title="Hello")

    first = user.posts
    with count_queries(db) as log:
        second = user.posts

    assert first is second
    assert log == []
    assert user.relation_loaded("posts")


def test_queries_without_database_raise():
    with pytest.raises(ConfigurationError):
        User.query()


def test_raw_rows_match_entities(db):
    User.create(name="Ada", votes=2)

    assert table_rows(db, "users")[0]["name"] == "Ada"
