"""Shared fixtures: package tarballs and stub upstream registries."""

import io
import json
import socket
import tarfile

import pytest
from aiohttp import web


def write_tarball(path, manifest=None, *, top_dir="package", manifest_bytes=None,
                  before=None, after=None, tar_format=tarfile.DEFAULT_FORMAT):
    """Write a gzip-compressed npm-style tarball and return its path as str.

    ``before``/``after`` map extra entry names to bytes placed around the
    manifest entry.
    """
    if manifest_bytes is None and manifest is not None:
        manifest_bytes = json.dumps(manifest).encode("utf-8")

    def _add(tar, name, data):
        info = tarfile.TarInfo(name)
        info.size = len(data)
        info.mode = 0o644
        tar.addfile(info, io.BytesIO(data))

    with tarfile.open(str(path), "w:gz", format=tar_format) as tar:
        for name, data in (before or {}).items():
            _add(tar, name, data)
        if manifest_bytes is not None:
            _add(tar, f"{top_dir}/package.json", manifest_bytes)
        for name, data in (after or {}).items():
            _add(tar, name, data)
    return str(path)


@pytest.fixture
def make_tarball(tmp_path):
    """Factory writing tarballs under the test's tmp_path."""
    counter = {"n": 0}

    def _make(manifest=None, filename=None, **kwargs):
        counter["n"] += 1
        target = tmp_path / (filename or f"pkg-{counter['n']}.tgz")
        return write_tarball(target, manifest, **kwargs)

    return _make


def upstream_document(name, versions=("1.0.0",)):
    """Metadata document as the npm registry serves it."""
    return {
        "_id": name,
        "name": name,
        "description": f"{name} from upstream",
        "dist-tags": {"latest": versions[-1]},
        "versions": {
            version: {
                "name": name,
                "version": version,
                "dist": {
                    "shasum": "0" * 40,
                    "tarball": f"https://registry.npmjs.org/{name}/-/{name}-{version}.tgz",
                },
            }
            for version in versions
        },
        "time": {
            "created": "2015-01-01T00:00:00.000Z",
            "modified": "2015-01-01T00:00:00.000Z",
            **{version: "2015-01-01T00:00:00.000Z" for version in versions},
        },
    }


def make_stub_registry(documents=None, raw=None, seen=None):
    """aiohttp app standing in for the upstream registry.

    Args:
        documents: path -> JSON document answered with 200.
        raw: path -> (status, body bytes, content type).
        seen: list collecting (method, path_qs, headers, body) per request.
    """
    documents = documents or {}
    raw = raw or {}

    async def handler(request):
        body = await request.read()
        if seen is not None:
            seen.append((request.method, request.rel_url.raw_path_qs, dict(request.headers), body))
        path = request.rel_url.raw_path
        if path in raw:
            status, payload, content_type = raw[path]
            return web.Response(status=status, body=payload, content_type=content_type)
        if path in documents:
            return web.json_response(documents[path])
        return web.json_response({"error": "Not found"}, status=404)

    app = web.Application()
    app.router.add_route("*", "/{path:.*}", handler)
    return app


def unused_port():
    """A local TCP port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
