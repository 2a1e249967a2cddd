"""
Store Model

The full contents of the data file: one list per collection.

    {"users": [...], "tasks": [...], "ideas": [...],
     "profits": [...], "inbox": [...], "reviews": [...]}

A snapshot handed to the aggregation code is a deep copy of this model.
"""

from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from daily_ops.models.records import (
    Idea,
    InboxEntry,
    ProfitEntry,
    Review,
    Task,
    User,
)


logger = structlog.get_logger(__name__)

COLLECTION_NAMES = ("users", "tasks", "ideas", "profits", "inbox", "reviews")

RECORD_TYPES = {
    "users": User,
    "tasks": Task,
    "ideas": Idea,
    "profits": ProfitEntry,
    "inbox": InboxEntry,
    "reviews": Review,
}


class _StoreFile(BaseModel):
    """
    Shape check for the data file before records are read.

    The file must be a JSON object whose collections, when present, are
    lists. Anything else fails validation.
    """
    model_config = ConfigDict(extra="ignore")

    users: Optional[list[Any]] = None
    tasks: Optional[list[Any]] = None
    ideas: Optional[list[Any]] = None
    profits: Optional[list[Any]] = None
    inbox: Optional[list[Any]] = None
    reviews: Optional[list[Any]] = None


class StoreData(BaseModel):
    """
    Every record the application owns.

    Missing collections load as empty lists, so an older file without
    e.g. "reviews" is still readable.
    """
    model_config = ConfigDict(extra="ignore")

    users: list[User] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list)
    ideas: list[Idea] = Field(default_factory=list)
    profits: list[ProfitEntry] = Field(default_factory=list)
    inbox: list[InboxEntry] = Field(default_factory=list)
    reviews: list[Review] = Field(default_factory=list)

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Serialize with on-disk (camelCase) field names."""
        return self.model_dump_json(by_alias=True, indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "StoreData":
        """
        Load a data file.

        Raises ValidationError when the text is not a JSON object or a
        collection is not a list. Single records that do not validate are
        skipped with a warning; the rest of the file still loads.
        """
        raw = _StoreFile.model_validate_json(text)

        collections: dict[str, list[Any]] = {}
        for name in COLLECTION_NAMES:
            record_type = RECORD_TYPES[name]
            records = []
            for index, item in enumerate(getattr(raw, name) or []):
                try:
                    records.append(record_type.model_validate(item))
                except ValidationError as e:
                    logger.warning(
                        "record_skipped",
                        collection=name,
                        index=index,
                        record_id=item.get("id") if isinstance(item, dict) else None,
                        errors=e.error_count(),
                    )
            collections[name] = records
        return cls(**collections)

    def for_owner(self, owner_id: str) -> "StoreData":
        """
        Copy restricted to the records of one owner.

        Users are not owned records; the result only keeps the owner's
        own account.
        """
        return StoreData(
            users=[u.model_copy(deep=True) for u in self.users if u.id == owner_id],
            tasks=[t.model_copy(deep=True) for t in self.tasks if t.owner_id == owner_id],
            ideas=[i.model_copy(deep=True) for i in self.ideas if i.owner_id == owner_id],
            profits=[p.model_copy(deep=True) for p in self.profits if p.owner_id == owner_id],
            inbox=[e.model_copy(deep=True) for e in self.inbox if e.owner_id == owner_id],
            reviews=[r.model_copy(deep=True) for r in self.reviews if r.owner_id == owner_id],
        )

    def counts(self) -> dict[str, int]:
        return {name: len(getattr(self, name)) for name in COLLECTION_NAMES}


# Read-only copy of the store handed out by StorageEngine.snapshot()
StoreSnapshot = StoreData
