"""Magazine catalog reads/writes and premium-content gating."""

from datetime import datetime, timezone
from typing import Callable
from urllib.parse import quote

from sqlalchemy import select

from magsub.common.errors import NotFound
from magsub.common.identity import AuthUser
from magsub.common.logging import logger
from magsub.common.state_machine import SubscriptionStatus
from magsub.services.billing.ledger import read_subscription
from magsub.services.content.models import Magazine
from magsub.services.content.schemas import MagazineCreateRequest, MagazineDetail, MagazineSummary

STORAGE_PUBLIC_PATH = "/storage/v1/object/public/"


def public_image_url(image_url: str | None, storage_url: str, bucket: str) -> str | None:
    """Public URL for a stored image.

    Accepts either a bucket-relative path or a public URL of the same bucket
    (its path is extracted and re-rooted on `storage_url`). Empty values and
    URLs pointing elsewhere are returned unchanged.
    """

    if not image_url or not image_url.strip():
        return image_url
    marker = f"{STORAGE_PUBLIC_PATH}{bucket}/"
    path = image_url
    if marker in path:
        path = path.split(marker, 1)[1]
    elif path.startswith(("http://", "https://")):
        return image_url
    path = path.lstrip("/")
    if not path:
        return image_url
    return f"{storage_url.rstrip('/')}{marker}{quote(path)}"


class MagazineService:
    def __init__(
        self,
        session_factory,
        storage_url: str,
        bucket: str,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.session_factory = session_factory
        self.storage_url = storage_url
        self.bucket = bucket
        self.clock = clock

    def _image(self, magazine: Magazine) -> str:
        return public_image_url(magazine.image_url, self.storage_url, self.bucket) or ""

    def list_magazines(self, limit: int = 10) -> list[MagazineSummary]:
        with self.session_factory() as db:
            rows = db.execute(select(Magazine).order_by(Magazine.created_at.desc()).limit(limit)).scalars().all()
        return [
            MagazineSummary(
                id=row.id,
                image_url=self._image(row),
                category=row.category,
                title=row.title,
                description=row.description,
                tags=row.tags,
            )
            for row in rows
        ]

    def subscription_of(self, user: AuthUser | None) -> SubscriptionStatus | None:
        if user is None:
            return None
        return read_subscription(self.session_factory, self.clock(), user_id=user.id)

    def get_magazine(self, magazine_id: str, reader: AuthUser | None) -> MagazineDetail:
        """Article detail; the body is withheld unless the reader is subscribed."""

        with self.session_factory() as db:
            row = db.get(Magazine, magazine_id)
        if row is None:
            raise NotFound("magazine not found")
        subscription = self.subscription_of(reader)
        unlocked = subscription is not None and subscription.is_subscribed
        return MagazineDetail(
            id=row.id,
            image_url=self._image(row),
            category=row.category,
            title=row.title,
            description=row.description,
            tags=row.tags,
            content=row.content if unlocked else None,
            locked=not unlocked,
        )

    def create_magazine(self, req: MagazineCreateRequest, author: AuthUser) -> MagazineDetail:
        with self.session_factory() as db:
            row = Magazine(
                image_url=req.image_url,
                category=req.category,
                title=req.title,
                description=req.description,
                content=req.content,
                tags=req.tags,
                user_id=author.id,
                created_at=self.clock(),
            )
            db.add(row)
            db.commit()
        logger.info("magazine created id=%s user_id=%s", row.id, author.id)
        return MagazineDetail(
            id=row.id,
            image_url=self._image(row),
            category=row.category,
            title=row.title,
            description=row.description,
            tags=row.tags,
            content=row.content,
        )
