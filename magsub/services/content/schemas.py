"""API request/response schemas for content endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class MagazineCreateRequest(BaseModel):
    """Payload accepted by `POST /magazines`.

    `imageUrl` is a storage path (or public URL) of an already uploaded image.
    """

    model_config = ConfigDict(populate_by_name=True)

    category: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    content: str = Field(min_length=1)
    tags: list[str] | None = None
    image_url: str = Field(default="", alias="imageUrl")


class MagazineSummary(BaseModel):
    id: str
    image_url: str
    category: str
    title: str
    description: str
    tags: list[str] | None = None


class MagazineDetail(MagazineSummary):
    content: str | None = None
    locked: bool = False
