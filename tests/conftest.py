"""Pytest configuration and fixtures."""

import pytest

from sideorm import SideORMConfig
from sideorm.database import Database

SCHEMA = [
    "CREATE SEQUENCE seq_countries",
    """CREATE TABLE countries (
        id INTEGER DEFAULT nextval('seq_countries'),
        name VARCHAR,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )""",
    "CREATE SEQUENCE seq_users",
    """CREATE TABLE users (
        id INTEGER DEFAULT nextval('seq_users'),
        name VARCHAR,
        email VARCHAR,
        votes INTEGER DEFAULT 0,
        country_id INTEGER,
        parent_id INTEGER,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )""",
    "CREATE SEQUENCE seq_posts",
    """CREATE TABLE posts (
        id INTEGER DEFAULT nextval('seq_posts'),
        user_id INTEGER,
        title VARCHAR,
        created_at TIMESTAMP,
        updated_at TIMESTAMP,
        deleted_at TIMESTAMP
    )""",
    "CREATE SEQUENCE seq_comments",
    """CREATE TABLE comments (
        id INTEGER DEFAULT nextval('seq_comments'),
        post_id INTEGER,
        body VARCHAR,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )""",
    "CREATE SEQUENCE seq_phones",
    """CREATE TABLE phones (
        id INTEGER DEFAULT nextval('seq_phones'),
        user_id INTEGER,
        phone_number VARCHAR
    )""",
    "CREATE SEQUENCE seq_roles",
    """CREATE TABLE roles (
        id INTEGER DEFAULT nextval('seq_roles'),
        name VARCHAR,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )""",
    """CREATE TABLE role_user (
        user_id INTEGER,
        role_id INTEGER,
        notes VARCHAR,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )""",
    "CREATE TABLE friendships (user_id INTEGER, friend_id INTEGER)",
    "CREATE SEQUENCE seq_images",
    """CREATE TABLE images (
        id INTEGER DEFAULT nextval('seq_images'),
        url VARCHAR,
        imageable_id INTEGER,
        imageable_type VARCHAR,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )""",
    "CREATE SEQUENCE seq_tags",
    """CREATE TABLE tags (
        id INTEGER DEFAULT nextval('seq_tags'),
        name VARCHAR,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )""",
    "CREATE TABLE taggables (tag_id INTEGER, taggable_id INTEGER, taggable_type VARCHAR)",
    "CREATE SEQUENCE seq_profiles",
    """CREATE TABLE profiles (
        id INTEGER DEFAULT nextval('seq_profiles'),
        bio VARCHAR,
        created_at TIMESTAMP,
        updated_at TIMESTAMP
    )""",
    "CREATE SEQUENCE seq_user_profiles",
    """CREATE TABLE user_profiles (
        id INTEGER DEFAULT nextval('seq_user_profiles'),
        user_id INTEGER,
        profile_id INTEGER
    )""",
]


@pytest.fixture(autouse=True)
def reset_context():
    """Clear the current resolver, dispatcher and guard state around each test.

    Entities look their connection up from context, so a test that forgets
    to uninstall its Database must not leak it into the next one.
    """
    from sideorm.core.entity import _unguarded
    from sideorm.core.registry import set_dispatcher, set_resolver

    set_resolver(None)
    set_dispatcher(None)
    _unguarded.set(False)

    yield

    set_resolver(None)
    set_dispatcher(None)
    _unguarded.set(False)


@pytest.fixture
def db():
    """In-memory DuckDB database with the test schema, installed as current."""
    database = Database(SideORMConfig(log_queries=True))
    database.install()

    for statement in SCHEMA:
        database.statement(statement)
    database.connection().flush_query_log()

    yield database

    database.uninstall()
    database.disconnect()
