"""Account erasure: delete everything a user owns, then the user."""

import logging
from dataclasses import dataclass, field

from sqlalchemy import delete
from sqlalchemy.orm import Session

from vinho.db.models import ProfileDB, QueueJobDB, ScanDB, TastingDB, UserPreferenceDB
from vinho.db.repositories import ScanRepository
from vinho.pipeline.storage import ImageStorage

logger = logging.getLogger(__name__)


@dataclass
class ErasureResult:
    """Rows and files removed for one user."""

    user_id: str
    deleted: dict[str, int] = field(default_factory=dict)
    images_deleted: int = 0
    image_errors: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "deleted": self.deleted,
            "images_deleted": self.images_deleted,
            "image_errors": self.image_errors,
        }


class AccountService:
    """Deletes user-owned data."""

    def __init__(self, session: Session, storage: ImageStorage | None = None):
        self.session = session
        self.storage = storage

    def erase_user(self, user_id: str) -> ErasureResult:
        """
        Delete a user's queue jobs, tastings, scans and preferences, then
        the profile, in one transaction.

        Stored label images are removed after the commit; a file that
        cannot be removed is logged and counted, not raised.

        Args:
            user_id: The user to erase

        Returns:
            ErasureResult with per-table counts
        """
        result = ErasureResult(user_id=user_id)
        image_paths = ScanRepository(self.session).list_image_paths(user_id)

        # Jobs reference scans, so they go first
        for label, model, column in (
            ("wine_queue_jobs", QueueJobDB, QueueJobDB.user_id),
            ("tastings", TastingDB, TastingDB.user_id),
            ("scans", ScanDB, ScanDB.user_id),
            ("user_preferences", UserPreferenceDB, UserPreferenceDB.user_id),
            ("profiles", ProfileDB, ProfileDB.id),
        ):
            deleted = self.session.execute(
                delete(model).where(column == user_id).execution_options(synchronize_session=False)
            )
            result.deleted[label] = deleted.rowcount or 0

        self.session.commit()
        logger.info(f"Erased user {user_id}: {result.deleted}")

        if self.storage is not None:
            for path in image_paths:
                try:
                    if self.storage.delete_image(path):
                        result.images_deleted += 1
                except (OSError, ValueError) as e:
                    result.image_errors += 1
                    logger.warning(f"Could not delete image {path} for user {user_id}: {e}")

        return result
