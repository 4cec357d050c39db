"""
Pydantic data models package.

Contains data validation models for:
- API error responses
- Bulk index routing
"""

from .index_definition import IndexDefinition
from .responses import ErrorResponse

__all__ = [
    "ErrorResponse",
    "IndexDefinition",
]
