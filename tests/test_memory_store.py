import uuid

import pytest

from authgate.storage.errors import ConstraintViolation, StoreError
from authgate.storage.memory import MemoryStore
from authgate.storage.models import Role, User


def _user(email="a@x.com", phone=1234567890, **kwargs) -> User:
    return User(
        id=kwargs.pop("id", str(uuid.uuid4())),
        name=kwargs.pop("name", "Alice"),
        email=email,
        password=kwargs.pop("password", "hash"),
        phone_number=phone,
        **kwargs,
    )


@pytest.fixture
def store():
    return MemoryStore()


class TestInsertAndFind:
    def test_insert_lowercases_email(self, store):
        created = store.insert(_user(email="Alice@Example.COM"))
        assert created.email == "alice@example.com"
        assert store.find_matching({"email": "ALICE@example.com"})[0].id == created.id

    def test_duplicate_email_is_constraint_violation(self, store):
        store.insert(_user())
        with pytest.raises(ConstraintViolation) as excinfo:
            store.insert(_user(phone=1234567891))
        assert excinfo.value.detail == {"field": "email"}

    def test_duplicate_phone_is_constraint_violation(self, store):
        store.insert(_user())
        with pytest.raises(ConstraintViolation) as excinfo:
            store.insert(_user(email="b@x.com"))
        assert excinfo.value.detail == {"field": "phone_number"}

    def test_find_matching_unknown_field_raises(self, store):
        with pytest.raises(ValueError):
            store.find_matching({"nickname": "x"})

    def test_find_matching_role_accepts_any_casing(self, store):
        store.insert(_user(role=Role.DEVELOPER))
        assert len(store.find_matching({"role": "Developer"})) == 1

    def test_returned_users_are_copies(self, store):
        created = store.insert(_user())
        created.name = "Mallory"
        assert store.find_by_id(created.id).name == "Alice"

    def test_find_by_id_missing(self, store):
        assert store.find_by_id("missing") is None


class TestUpdate:
    def test_update_by_id_applies_patch(self, store):
        created = store.insert(_user())
        updated = store.update_by_id(created.id, {"role": "admin", "address": "1 Main St"})
        assert updated.role == Role.ADMIN
        assert updated.address == "1 Main St"
        assert updated.updated_at >= created.updated_at

    def test_update_by_id_missing_returns_none(self, store):
        assert store.update_by_id("missing", {"name": "x"}) is None

    def test_immutable_fields_rejected(self, store):
        created = store.insert(_user())
        with pytest.raises(ValueError):
            store.update_by_id(created.id, {"id": "other"})

    def test_update_matching_counts_rows(self, store):
        store.insert(_user())
        store.insert(_user(email="b@x.com", phone=1234567891))
        assert store.update_matching({"role": "user"}, {"is_active": False}) == 2
        assert store.find_matching({"is_active": True}) == []

    def test_update_matching_is_all_or_nothing(self, store):
        first = store.insert(_user())
        store.insert(_user(email="b@x.com", phone=1234567891))
        with pytest.raises(ConstraintViolation):
            store.update_matching({}, {"phone_number": 1234567890})
        assert store.find_by_id(first.id).phone_number == 1234567890
        assert len(store.find_matching({"phone_number": 1234567891})) == 1


    def test_update_matching_cannot_share_a_unique_value(self, store):
        store.insert(_user())
        store.insert(_user(email="b@x.com", phone=1234567891))
        with pytest.raises(ConstraintViolation):
            store.update_matching({}, {"phone_number": 5555555555})
        assert store.find_matching({"phone_number": 5555555555}) == []


class TestPersistence:
    def test_snapshot_round_trips_across_instances(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        created = store.insert(_user(role=Role.ADMIN, created_by=None))

        reloaded = MemoryStore(fs_root=str(tmp_path))
        user = reloaded.find_by_id(created.id)
        assert user.email == "a@x.com"
        assert user.role == Role.ADMIN
        assert user.created_at == created.created_at

    def test_failed_snapshot_write_leaves_no_user_behind(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        (tmp_path / "state" / "users.json").mkdir()

        with pytest.raises(StoreError):
            store.insert(_user(email="b@x.com"))
        assert store.find_matching({"email": "b@x.com"}) == []

        (tmp_path / "state" / "users.json").rmdir()
        assert store.insert(_user(email="b@x.com")).email == "b@x.com"

    def test_failed_snapshot_write_leaves_update_unapplied(self, tmp_path):
        store = MemoryStore(fs_root=str(tmp_path))
        created = store.insert(_user())
        path = tmp_path / "state" / "users.json"
        path.unlink()
        path.mkdir()

        with pytest.raises(StoreError):
            store.update_by_id(created.id, {"name": "Mallory"})
        assert store.find_by_id(created.id).name == "Alice"

    def test_corrupt_snapshot_raises_store_error(self, tmp_path):
        (tmp_path / "state").mkdir()
        (tmp_path / "state" / "users.json").write_text("{not json")
        with pytest.raises(StoreError):
            MemoryStore(fs_root=str(tmp_path))
