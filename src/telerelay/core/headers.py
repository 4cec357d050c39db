"""
Header policy for relayed telemetry requests.

Every inbound header is classified by name only:
- host-specific (Host, Connection): never copied onto an outbound request
- content-specific (Content-*): attached to the outbound body, not the general headers
- pass-through: copied verbatim, keeping multi-value order
"""

from enum import Enum
from typing import Iterable, Mapping, Tuple, Union

from multidict import CIMultiDict, CIMultiDictProxy

HOST_SPECIFIC_HEADERS = frozenset({"connection", "host"})
CONTENT_HEADER_PREFIX = "content-"

HeaderSet = CIMultiDictProxy
HeaderSource = Union[
    Mapping[str, Union[str, Iterable[str]]],
    Iterable[Tuple[str, str]],
]


class HeaderKind(str, Enum):
    """Header classification."""

    HOST_SPECIFIC = "host_specific"
    CONTENT_SPECIFIC = "content_specific"
    PASS_THROUGH = "pass_through"


def classify(name: str) -> HeaderKind:
    """Classify a header by its (case-insensitive) name."""
    lowered = name.lower()
    if lowered in HOST_SPECIFIC_HEADERS:
        return HeaderKind.HOST_SPECIFIC
    if lowered.startswith(CONTENT_HEADER_PREFIX):
        return HeaderKind.CONTENT_SPECIFIC
    return HeaderKind.PASS_THROUGH


def is_host_specific(name: str) -> bool:
    return classify(name) is HeaderKind.HOST_SPECIFIC


def is_content_specific(name: str) -> bool:
    return classify(name) is HeaderKind.CONTENT_SPECIFIC


def build_header_set(source: HeaderSource) -> "CIMultiDictProxy[str]":
    """
    Build a read-only HeaderSet.

    Accepts a mapping of name -> value or name -> list of values, a
    multidict, or an iterable of (name, value) pairs (e.g. Starlette's
    ``headers.items()``).
    Values of repeated headers keep their order.
    """
    headers: "CIMultiDict[str]" = CIMultiDict()

    items = source.items() if isinstance(source, Mapping) else source

    for name, value in items:
        if isinstance(value, str):
            headers.add(name, value)
        else:
            for single in value:
                headers.add(name, single)

    return CIMultiDictProxy(headers)


def split_for_forward(
    headers: "CIMultiDictProxy[str]",
) -> Tuple["CIMultiDictProxy[str]", "CIMultiDictProxy[str]"]:
    """
    Split headers for the canonical forward.

    Returns ``(general, content)``: host-specific headers are dropped,
    content-specific headers go to the body metadata.
    """
    general: "CIMultiDict[str]" = CIMultiDict()
    content: "CIMultiDict[str]" = CIMultiDict()

    for name, value in headers.items():
        kind = classify(name)
        if kind is HeaderKind.HOST_SPECIFIC:
            continue
        if kind is HeaderKind.CONTENT_SPECIFIC:
            content.add(name, value)
        else:
            general.add(name, value)

    return CIMultiDictProxy(general), CIMultiDictProxy(content)


def filter_for_sinks(headers: "CIMultiDictProxy[str]") -> "CIMultiDictProxy[str]":
    """Drop host-specific headers only; sinks get structured data, so Content-* stays."""
    filtered: "CIMultiDict[str]" = CIMultiDict()
    for name, value in headers.items():
        if not is_host_specific(name):
            filtered.add(name, value)
    return CIMultiDictProxy(filtered)


def content_encodings(headers: "CIMultiDictProxy[str]") -> Tuple[str, ...]:
    """All Content-Encoding values, in order."""
    return tuple(headers.getall("Content-Encoding", ()))
