"""Out-of-band reconciliation between recipe rows and blobs.

Two partial-failure outcomes can outlive a request:

1. A visible row with no body blob (crash between row insert and body write
   during create). The row never finished being created, so it is retired
   with a soft delete.
2. A deleted row whose body or image blob is still stored (best-effort
   cleanup failed). The blobs are removed.

A create that is still running is indistinguishable from a crashed one, so
only rows older than `grace_seconds` are retired. The grace period must be
longer than any create can take.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ..storage.blobs import BlobStore, BlobStoreError
from .metadata import MetadataStore
from .recipes import body_key

logger = logging.getLogger("recipebook.reconcile")

DEFAULT_GRACE_SECONDS = 3600


@dataclass
class ReconcileReport:
    retired_recipes: list[int] = field(default_factory=list)
    removed_blobs: list[str] = field(default_factory=list)
    failed_blobs: list[str] = field(default_factory=list)


def _blob_exists(blobs: BlobStore, key: str, report: ReconcileReport) -> bool:
    try:
        return blobs.exists(key)
    except BlobStoreError as e:
        logger.error(f"Could not check blob {key}: {e}")
        report.failed_blobs.append(key)
        return False


def reconcile(
    metadata: MetadataStore,
    blobs: BlobStore,
    dry_run: bool = False,
    grace_seconds: int = DEFAULT_GRACE_SECONDS,
) -> ReconcileReport:
    report = ReconcileReport()
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=grace_seconds)

    for ref in metadata.list_recipe_refs(deleted=False, created_before=cutoff):
        key = body_key(ref.id)
        if blobs.exists(key):
            continue
        logger.warning(f"Recipe {ref.id} has no body blob; retiring it")
        # The age condition is re-checked in the update itself
        if dry_run or metadata.mark_recipe_deleted(ref.id, created_before=cutoff):
            report.retired_recipes.append(ref.id)

    for ref in metadata.list_recipe_refs(deleted=True):
        for key in (body_key(ref.id), ref.image_ref):
            if not key or not _blob_exists(blobs, key, report):
                continue
            if dry_run or blobs.delete(key):
                report.removed_blobs.append(key)
            else:
                report.failed_blobs.append(key)

    logger.info(
        f"Reconcile{' (dry run)' if dry_run else ''}: "
        f"{len(report.retired_recipes)} recipes retired, "
        f"{len(report.removed_blobs)} blobs removed, "
        f"{len(report.failed_blobs)} blobs failed"
    )
    return report
