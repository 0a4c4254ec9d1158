from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from sqlalchemy import update

from recipebook.models import Recipe
from recipebook.services.reconcile import reconcile
from recipebook.services.recipes import RecipePersistenceEngine, body_key
from recipebook.schemas import RecipeCreate
from recipebook.storage.blobs import BlobStoreError
from conftest import recipe_payload


def _backdate(db_session, recipe_id, hours=2):
    db_session.execute(
        update(Recipe)
        .where(Recipe.id == recipe_id)
        .values(created_at=datetime.now(timezone.utc) - timedelta(hours=hours))
    )
    db_session.commit()


def test_retires_old_row_without_body(metadata, blob_store, db_session):
    alice = metadata.insert_user("alice", "d")
    orphan = metadata.insert_recipe("Half-created", None, alice.id)
    _backdate(db_session, orphan)

    report = reconcile(metadata, blob_store)
    assert report.retired_recipes == [orphan]
    assert metadata.get_recipe(orphan) is None


def test_fresh_row_without_body_is_left_alone(metadata, blob_store):
    alice = metadata.insert_user("alice", "d")
    in_flight = metadata.insert_recipe("Being created", None, alice.id)

    report = reconcile(metadata, blob_store)
    assert report.retired_recipes == []
    assert metadata.get_recipe(in_flight) is not None


def test_create_racing_reconcile_stays_visible(metadata, blob_store, gate):
    """Reconcile runs between the row insert and the body write of a create."""
    alice = metadata.insert_user("alice", "d")
    reports = []

    class ReconcileBeforeWrite:
        def __init__(self, inner):
            self.inner = inner

        def write(self, key, data):
            if not reports:
                reports.append(reconcile(metadata, blob_store))
            self.inner.write(key, data)

        def read(self, key):
            return self.inner.read(key)

        def delete(self, key):
            return self.inner.delete(key)

    engine = RecipePersistenceEngine(metadata, ReconcileBeforeWrite(blob_store), gate)
    created = engine.create(alice.id, RecipeCreate.model_validate(recipe_payload()))

    assert reports[0].retired_recipes == []
    # A later run still sees a complete recipe
    assert reconcile(metadata, blob_store).removed_blobs == []
    assert engine.read(created.id).name == "Pancakes"


def test_keeps_complete_rows(metadata, blob_store, db_session):
    alice = metadata.insert_user("alice", "d")
    recipe_id = metadata.insert_recipe("Soup", None, alice.id)
    blob_store.write(body_key(recipe_id), b"{}")
    _backdate(db_session, recipe_id)

    report = reconcile(metadata, blob_store)
    assert report.retired_recipes == []
    assert metadata.get_recipe(recipe_id) is not None


def test_zero_grace_retires_immediately(metadata, blob_store, db_session):
    alice = metadata.insert_user("alice", "d")
    orphan = metadata.insert_recipe("Half-created", None, alice.id)
    _backdate(db_session, orphan, hours=0.01)

    report = reconcile(metadata, blob_store, grace_seconds=0)
    assert report.retired_recipes == [orphan]


def test_removes_leftover_blobs_of_deleted_rows(metadata, blob_store):
    alice = metadata.insert_user("alice", "d")
    recipe_id = metadata.insert_recipe("Soup", None, alice.id)
    metadata.set_image_ref(recipe_id, "image-abc")
    blob_store.write(body_key(recipe_id), b"{}")
    blob_store.write("image-abc", b"img")
    metadata.soft_delete_recipe(recipe_id, author=alice.id)

    report = reconcile(metadata, blob_store)
    assert sorted(report.removed_blobs) == sorted([body_key(recipe_id), "image-abc"])
    assert list(blob_store.root.iterdir()) == []


def test_unreadable_image_ref_is_reported(metadata, blob_store):
    alice = metadata.insert_user("alice", "d")
    recipe_id = metadata.insert_recipe("Soup", None, alice.id)
    metadata.set_image_ref(recipe_id, "../escape")
    metadata.soft_delete_recipe(recipe_id, author=alice.id)

    report = reconcile(metadata, blob_store)
    assert report.failed_blobs == ["../escape"]


def test_blob_check_failure_is_reported(metadata):
    alice = metadata.insert_user("alice", "d")
    recipe_id = metadata.insert_recipe("Soup", None, alice.id)
    metadata.soft_delete_recipe(recipe_id, author=alice.id)
    blobs = MagicMock()
    blobs.exists.side_effect = BlobStoreError("unreachable")

    report = reconcile(metadata, blobs)
    assert report.failed_blobs == [body_key(recipe_id)]
    blobs.delete.assert_not_called()


def test_dry_run_changes_nothing(metadata, blob_store, db_session):
    alice = metadata.insert_user("alice", "d")
    orphan = metadata.insert_recipe("Half-created", None, alice.id)
    _backdate(db_session, orphan)
    gone = metadata.insert_recipe("Gone", None, alice.id)
    blob_store.write(body_key(gone), b"{}")
    metadata.soft_delete_recipe(gone, author=alice.id)

    report = reconcile(metadata, blob_store, dry_run=True)
    assert report.retired_recipes == [orphan]
    assert report.removed_blobs == [body_key(gone)]
    assert metadata.get_recipe(orphan) is not None
    assert blob_store.exists(body_key(gone))
