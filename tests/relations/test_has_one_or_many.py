"""Tests for has-one/has-many, belongs-to and their polymorphic variants."""

from datetime import datetime

import pytest

from sideorm.core.relations import BelongsTo, HasMany, MorphTo
from tests.entities import Image, Phone, Post, User


@pytest.fixture
def ada(db):
    return User.create(name="Ada")


@pytest.fixture
def bob(db):
    return User.create(name="Bob")


# Has many / has one


def test_has_many_lazy_load(ada, bob):
    Post.create(user_id=ada.get_key(), title="One")
    Post.create(user_id=ada.get_key(), title="Two")
    Post.create(user_id=bob.get_key(), title="Other")

    assert sorted(post["title"] for post in ada.posts) == ["One", "Two"]
    assert isinstance(ada.related("posts"), HasMany)


def test_relation_query_chains(ada):
    for title in ("b", "a", "c"):
        Post.create(user_id=ada.get_key(), title=title)

    titles = ada.related("posts").where("title", "!=", "c").order_by("title").pluck("title")

    assert titles == ["a", "b"]
    assert ada.related("posts").count() == 3


def test_has_many_create_sets_foreign_key(ada):
    post = ada.related("posts").create({"title": "Hello"})

    assert post.exists
    assert post["user_id"] == ada.get_key()
    assert Post.find(post.get_key())["user_id"] == ada.get_key()


def test_has_many_save_and_save_many(ada):
    saved = ada.related("posts").save(Post(title="Draft"))
    more = ada.related("posts").save_many([Post(title="A"), Post(title="B")])

    assert saved["user_id"] == ada.get_key()
    assert all(post.exists for post in more)
    assert ada.related("posts").count() == 3


def test_has_many_create_many(ada):
    posts = ada.related("posts").create_many([{"title": "A"}, {"title": "B"}])

    assert [post["user_id"] for post in posts] == [ada.get_key(), ada.get_key()]


def test_has_many_update_only_touches_own_rows(ada, bob):
    ada.related("posts").create({"title": "Mine"})
    bob.related("posts").create({"title": "Theirs"})

    assert ada.related("posts").update({"title": "Renamed"}) == 1
    assert sorted(Post.query().pluck("title")) == ["Renamed", "Theirs"]


def test_relation_touch_stamps_related_rows(db, ada):
    ada.related("posts").create({"title": "Old"})
    db.table("posts").update({"updated_at": datetime(2020, 1, 1)})

    ada.related("posts").touch()

    assert Post.query().first()["updated_at"] > datetime(2020, 1, 1)


def test_has_one(ada, bob):
    ada.related("phone").create({"phone_number": "555-0100"})

    assert ada.phone["phone_number"] == "555-0100"
    assert bob.phone is None


# Belongs to


def test_belongs_to_lazy_load(ada):
    post = Post.create(user_id=ada.get_key(), title="Hello")

    assert post.user.is_same(ada)
    assert isinstance(post.related("user"), BelongsTo)


def test_belongs_to_with_null_key(db):
    assert Post.create(title="Orphan").user is None


def test_belongs_to_custom_keys(ada):
    kid = User.create(name="Kid", parent_id=ada.get_key())

    assert kid.parent.is_same(ada)
    assert [child["name"] for child in ada.children] == ["Kid"]


def test_associate_and_dissociate(ada, bob):
    phone = Phone.create(user_id=ada.get_key(), phone_number="555-0100")

    phone.related("user").associate(bob)

    assert phone["user_id"] == bob.get_key()
    assert phone.get_relation("user") is bob
    phone.save()
    assert Phone.find(phone.get_key()).user.is_same(bob)

    phone.related("user").dissociate()

    assert phone["user_id"] is None
    assert phone.get_relation("user") is None


def test_belongs_to_update(ada):
    post = Post.create(user_id=ada.get_key(), title="Hello")

    assert post.related("user").update({"name": "Ada L."}) is True
    assert User.find(ada.get_key())["name"] == "Ada L."


# Polymorphic


def test_morph_many_is_scoped_by_type(ada):
    post = Post.create(title="Same id as Ada")
    assert post.get_key() == ada.get_key()

    image = ada.related("images").create({"url": "ada.png"})

    assert image["imageable_type"] == "user"
    assert image["imageable_id"] == ada.get_key()
    assert [found["url"] for found in ada.images] == ["ada.png"]
    assert list(post.images) == []


def test_morph_one(ada):
    ada.related("avatar").save(Image(url="face.png"))

    assert ada.avatar["url"] == "face.png"
    assert ada.avatar["imageable_type"] == "user"


def test_morph_to_lazy_load(ada):
    post = Post.create(title="Hello")
    on_user = ada.related("images").create({"url": "a.png"})
    on_post = post.related("images").create({"url": "p.png"})

    assert isinstance(on_user.imageable, User)
    assert on_user.imageable.is_same(ada)
    assert isinstance(on_post.imageable, Post)
    assert on_post.imageable.is_same(post)


def test_morph_to_without_type_is_empty(db):
    image = Image.create(url="loose.png")

    assert image.imageable is None
    assert isinstance(image.related("imageable"), MorphTo)


def test_morph_to_associate_and_dissociate(db):
    post = Post.create(title="Hello")
    image = Image(url="p.png")

    image.related("imageable").associate(post)
    image.save()

    assert image["imageable_type"] == "post"
    assert Image.find(image.get_key()).imageable.is_same(post)

    image.related("imageable").dissociate()

    assert image["imageable_id"] is None
    assert image["imageable_type"] is None


def test_morph_to_with_trashed(db):
    post = Post.create(title="Gone")
    image = post.related("images").create({"url": "p.png"})
    post.delete()

    assert Image.find(image.get_key()).imageable is None
    assert Image.find(image.get_key()).related("imageable").with_trashed().get_results().is_same(post)
