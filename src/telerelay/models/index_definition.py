"""
Bulk index routing models.

An index selector maps one telemetry record to the index definition used
in its bulk ``index`` action.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class IndexDefinition(BaseModel):
    """
    Index definition used in a bulk operation.

    Serialized with the bulk API's field names (``_index``, ``_type``,
    ``_id``); ``_id`` is left out entirely when not set.
    """

    index: str = Field(
        alias="_index",
        min_length=1,
        description="Name of the index",
    )
    type: str = Field(
        alias="_type",
        min_length=1,
        description="Name of the document type",
    )
    id: Optional[str] = Field(
        default=None,
        alias="_id",
        description="Optional document id; set it when documents may be re-indexed",
    )

    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
    )

    def to_action(self) -> Dict[str, Any]:
        """Bulk action line: ``{"index": {"_index": ..., "_type": ..., "_id"?: ...}}``."""
        return {"index": self.model_dump(by_alias=True, exclude_none=True)}
