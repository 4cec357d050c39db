"""
Tests for header classification and filtering.

Host-specific headers never leave the relay; Content-* headers travel with
the body on the canonical forward and stay visible to sinks.
"""

from typing import Dict, List

import pytest
from multidict import CIMultiDictProxy

from telerelay.core.headers import (
    HeaderKind,
    build_header_set,
    classify,
    content_encodings,
    filter_for_sinks,
    split_for_forward,
)


class TestClassify:
    """Test header classification by name."""

    @pytest.mark.parametrize("name", ["Host", "host", "CONNECTION", "Connection"])
    def test_host_specific(self, name: str):
        assert classify(name) is HeaderKind.HOST_SPECIFIC

    @pytest.mark.parametrize("name", ["Content-Type", "content-length", "CONTENT-ENCODING", "Content-MD5"])
    def test_content_specific(self, name: str):
        assert classify(name) is HeaderKind.CONTENT_SPECIFIC

    @pytest.mark.parametrize("name", ["Accept", "X-Request-Id", "User-Agent", "Contents", "Keep-Alive"])
    def test_pass_through(self, name: str):
        assert classify(name) is HeaderKind.PASS_THROUGH


class TestBuildHeaderSet:
    """Test HeaderSet construction."""

    def test_from_mapping_of_lists(self):
        headers = build_header_set({"Accept": ["text/plain", "application/json"], "Host": ["x"]})

        assert isinstance(headers, CIMultiDictProxy)
        assert headers.getall("accept") == ["text/plain", "application/json"]

    def test_from_mapping_of_strings(self):
        headers = build_header_set({"Content-Length": "42"})

        assert headers["content-length"] == "42"

    def test_from_pairs_keeps_repeated_values(self):
        headers = build_header_set([("x-tag", "a"), ("X-Tag", "b")])

        assert headers.getall("X-TAG") == ["a", "b"]

    def test_header_set_is_read_only(self):
        headers = build_header_set({"Accept": "a"})

        with pytest.raises(TypeError):
            headers["Accept"] = "b"  # type: ignore[index]


class TestSplitForForward:
    """Test the canonical-forward split."""

    def test_scenario_headers(self, gzip_headers: Dict[str, List[str]]):
        general, content = split_for_forward(build_header_set(gzip_headers))

        assert "Host" not in general and "Host" not in content
        assert "Connection" not in general and "Connection" not in content
        assert set(content.keys()) == {"Content-Length", "Content-Encoding", "Content-Type"}
        assert general["Accept"] == "application/json"
        assert general["X-Request-Id"] == "abc123"

    def test_multi_value_order_preserved(self):
        headers = build_header_set([("Accept", "a"), ("Accept", "b"), ("Content-Language", "en"), ("Content-Language", "de")])

        general, content = split_for_forward(headers)

        assert general.getall("Accept") == ["a", "b"]
        assert content.getall("Content-Language") == ["en", "de"]

    def test_only_host_specific_headers(self):
        general, content = split_for_forward(build_header_set({"Host": "x", "Connection": "close"}))

        assert len(general) == 0
        assert len(content) == 0


class TestFilterForSinks:
    """Test the header view handed to sinks."""

    def test_drops_host_specific_keeps_content(self, gzip_headers: Dict[str, List[str]]):
        filtered = filter_for_sinks(build_header_set(gzip_headers))

        assert "Host" not in filtered
        assert "Connection" not in filtered
        assert filtered["Content-Type"] == "application/x-json-stream"
        assert filtered["Content-Encoding"] == "gzip"
        assert filtered["Accept"] == "application/json"

    def test_content_encodings_in_order(self):
        headers = build_header_set({"Content-Encoding": ["gzip", "identity"]})

        assert content_encodings(headers) == ("gzip", "identity")
        assert content_encodings(build_header_set({})) == ()
