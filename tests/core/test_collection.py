"""Tests for entity collections."""

import json

import pytest

from sideorm import Collection
from tests.entities import User


@pytest.fixture
def users():
    return Collection(User().force_fill({"id": key, "name": name}) for key, name in [(1, "Ada"), (2, "Bob"), (3, "Cy")])


def test_collection_is_a_list(users):
    assert isinstance(users, list)
    assert len(users) == 3
    assert users[0]["name"] == "Ada"


def test_find_by_key_or_entity(users):
    assert users.find(2)["name"] == "Bob"
    assert users.find(users[2]) is users[2]
    assert users.find(9) is None
    assert users.find(9, "missing") == "missing"


def test_contains(users):
    assert users.contains(1)
    assert users.contains(users[0])
    assert users.contains(lambda user: user["name"] == "Cy")
    assert not users.contains(42)


def test_model_keys_and_pluck(users):
    assert users.model_keys() == [1, 2, 3]
    assert users.pluck("name") == ["Ada", "Bob", "Cy"]
    assert users.pluck("name", "id") == {1: "Ada", 2: "Bob", 3: "Cy"}


def test_first(users):
    assert users.first() is users[0]
    assert users.first(lambda user: user.get_key() > 1) is users[1]
    assert Collection().first(default="none") == "none"


def test_set_operations(users):
    other = Collection([users[1], User().force_fill({"id": 4, "name": "Dee"})])

    assert users.only([1, 3]).model_keys() == [1, 3]
    assert users.except_([1]).model_keys() == [2, 3]
    assert users.diff(other).model_keys() == [1, 3]
    assert users.intersect([2, 3]).model_keys() == [2, 3]
    assert users.merge(other).model_keys() == [1, 2, 3, 4]


def test_unique_keeps_last_entity_per_key(users):
    duplicate = User().force_fill({"id": 1, "name": "Ada again"})

    unique = Collection([*users, duplicate]).unique()

    assert unique.model_keys() == [1, 2, 3]
    assert unique.find(1)["name"] == "Ada again"


def test_get_dictionary(users):
    assert users.get_dictionary() == {1: users[0], 2: users[1], 3: users[2]}


def test_to_dict_and_json(users):
    data = users.to_dict()

    assert data[0] == {"id": 1, "name": "Ada"}
    assert json.loads(users.to_json())[2]["name"] == "Cy"


def test_load_on_empty_collection_is_a_no_op():
    assert Collection().load("posts") == []
