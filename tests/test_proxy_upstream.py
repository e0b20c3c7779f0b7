"""Tests for upstream client helpers."""

import pytest

aiohttp_mod = pytest.importorskip("aiohttp")

from multidict import CIMultiDict

from proxy.upstream import UpstreamClient


class TestUpstreamClientUrlBuilding:
    """Tests for upstream URL building."""

    def test_trailing_slash_stripped(self):
        client = UpstreamClient("https://registry.example.com/")
        assert client.build_url("/lodash") == "https://registry.example.com/lodash"

    def test_relative_path(self):
        client = UpstreamClient("https://registry.example.com")
        assert client.build_url("lodash") == "https://registry.example.com/lodash"

    def test_base_path_kept(self):
        """Upstreams mounted below a path prefix keep the prefix."""
        client = UpstreamClient("https://artifacts.example.com/api/npm/npm-remote")
        assert client.build_url("/-/v1/search?text=x") == (
            "https://artifacts.example.com/api/npm/npm-remote/-/v1/search?text=x"
        )


class TestUpstreamClientHeaders:
    """Tests for upstream request header handling."""

    def test_build_request_headers_strips_hop_and_host(self):
        """Ensure auth/content headers are preserved and hop-by-hop removed."""
        client = UpstreamClient()
        headers = {
            "Authorization": "Bearer token",
            "Content-Type": "application/json",
            "Connection": "keep-alive, X-Custom",
            "X-Custom": "remove-me",
            "Host": "localhost:4873",
            "Transfer-Encoding": "chunked",
            "Npm-Session": "abc123",
        }

        result = client._build_request_headers(headers)

        assert result["Authorization"] == "Bearer token"
        assert result["Content-Type"] == "application/json"
        assert result["Npm-Session"] == "abc123"
        assert "Connection" not in result
        assert "X-Custom" not in result
        assert "Host" not in result
        assert "Transfer-Encoding" not in result

    def test_conditional_validators_stripped(self):
        client = UpstreamClient()
        headers = {
            "If-None-Match": 'W/"123"',
            "if-modified-since": "Wed, 21 Oct 2015 07:28:00 GMT",
            "Accept": "application/vnd.npm.install-v1+json",
        }

        result = client._build_request_headers(headers)

        assert dict(result) == {"Accept": "application/vnd.npm.install-v1+json"}

    def test_build_request_headers_case_insensitive_connection(self):
        """Ensure Connection header is matched case-insensitively."""
        client = UpstreamClient()
        headers = {
            "connection": "keep-alive, X-Custom",
            "X-Custom": "remove-me",
            "Accept": "application/json",
        }

        result = client._build_request_headers(headers)

        assert "connection" not in result
        assert "X-Custom" not in result
        assert result["Accept"] == "application/json"

    def test_no_headers(self):
        assert len(UpstreamClient()._build_request_headers(None)) == 0

    def test_repeated_request_headers_kept(self):
        client = UpstreamClient()
        headers = CIMultiDict()
        headers.add("X-Trace", "a")
        headers.add("X-Trace", "b")
        headers.add("Connection", "close")

        result = client._build_request_headers(headers)

        assert result.getall("X-Trace") == ["a", "b"]
        assert "Connection" not in result


class TestUpstreamClientResponseHeaders:
    """Tests for response header filtering."""

    def test_forwards_all_end_to_end_headers(self):
        client = UpstreamClient()
        headers = {
            "Content-Type": "application/json",
            "Content-Length": "42",
            "ETag": '"abc"',
            "X-Request-Id": "12345",
            "Connection": "keep-alive",
            "Keep-Alive": "timeout=5",
            "Transfer-Encoding": "chunked",
        }

        result = client.filter_response_headers(headers)

        assert result["Content-Type"] == "application/json"
        assert result["Content-Length"] == "42"
        assert result["ETag"] == '"abc"'
        assert result["X-Request-Id"] == "12345"
        assert "Connection" not in result
        assert "Keep-Alive" not in result
        assert "Transfer-Encoding" not in result

    def test_repeated_headers_kept(self):
        client = UpstreamClient()
        headers = CIMultiDict()
        headers.add("Set-Cookie", "a=1")
        headers.add("Set-Cookie", "b=2")

        result = client.filter_response_headers(headers)

        assert result.getall("Set-Cookie") == ["a=1", "b=2"]

    def test_connection_tokens_removed(self):
        client = UpstreamClient()
        headers = {"connection": "X-Internal", "X-Internal": "secret", "Vary": "Accept"}

        result = client.filter_response_headers(headers)

        assert "X-Internal" not in result
        assert result["Vary"] == "Accept"
