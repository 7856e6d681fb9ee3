"""Entity types shared by the test suite (tables are created in conftest)."""

from sideorm import Entity, SoftDeletes, relation


class Country(Entity):
    fillable = ["name"]

    @relation
    def users(self):
        return self.has_many(User)

    @relation
    def posts(self):
        return self.has_many_through(Post, User)


class User(Entity):
    morph_class = "user"
    fillable = ["name", "email", "votes", "country_id", "parent_id"]

    @relation
    def posts(self):
        return self.has_many(Post)

    @relation
    def phone(self):
        return self.has_one(Phone)

    @relation
    def country(self):
        return self.belongs_to(Country)

    @relation
    def roles(self):
        return self.belongs_to_many(Role).with_pivot("notes").with_timestamps()

    @relation
    def friends(self):
        return self.belongs_to_many(User, "friendships", "user_id", "friend_id")

    @relation
    def children(self):
        return self.has_many(User, "parent_id")

    @relation
    def parent(self):
        return self.belongs_to(User, "parent_id")

    @relation
    def images(self):
        return self.morph_many(Image, "imageable")

    @relation
    def avatar(self):
        return self.morph_one(Image, "imageable")

    @relation
    def tags(self):
        return self.morph_to_many(Tag, "taggable")

    @relation
    def profile(self):
        return self.has_one_through(Profile, UserProfile)

    def scope_popular(self, query, votes=100):
        return query.where("votes", ">", votes)

    def scope_named(self, query, name):
        query.where("name", "=", name)

    def set_email_attribute(self, value):
        self.attributes["email"] = value.lower() if value else value


class Post(Entity):
    morph_class = "post"
    fillable = ["user_id", "title"]
    capabilities = (SoftDeletes(),)

    @relation
    def user(self):
        return self.belongs_to(User)

    @relation
    def comments(self):
        return self.has_many(Comment)

    @relation
    def images(self):
        return self.morph_many(Image, "imageable")

    @relation
    def tags(self):
        return self.morph_to_many(Tag, "taggable")


class Comment(Entity):
    fillable = ["post_id", "body"]
    touches = ["post"]

    @relation
    def post(self):
        return self.belongs_to(Post)

    @relation
    def author(self):
        return self.belongs_to_through(User, Post)


class Phone(Entity):
    timestamps = False
    fillable = ["user_id", "phone_number"]

    @relation
    def user(self):
        return self.belongs_to(User)


class Role(Entity):
    fillable = ["name"]

    @relation
    def users(self):
        return self.belongs_to_many(User)


class Image(Entity):
    fillable = ["url", "imageable_id", "imageable_type"]

    @relation
    def imageable(self):
        return self.morph_to()


class Tag(Entity):
    fillable = ["name"]

    @relation
    def posts(self):
        return self.morphed_by_many(Post, "taggable")

    @relation
    def users(self):
        return self.morphed_by_many(User, "taggable")


class Profile(Entity):
    fillable = ["bio"]


class UserProfile(Entity):
    timestamps = False
    fillable = ["user_id", "profile_id"]
