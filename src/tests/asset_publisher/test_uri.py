"""Tests for publication paths and public URI rendering."""

import pytest

from asset_publisher.exceptions import ConfigurationError
from asset_publisher.storage.base import BackendConfig
from asset_publisher.target import PublishTarget
from asset_publisher.uri import (
    encode_path_segments,
    encode_uri_path,
    relative_publication_path,
    render_persistent_resource_uri,
    render_static_resource_uri,
    target_object_key,
)
from tests.test_utils.fake_store import MemoryObjectStore
from tests.test_utils.publish_helpers import fake_sha1, make_resource

HASH = "a" * 39 + "1"


def render(resource, pattern="", base_uri="", key_prefix="", public_endpoint="https://acct.r2.cloudflarestorage.com/"):
    return render_persistent_resource_uri(
        resource,
        pattern=pattern,
        base_uri=base_uri,
        container_name="assets-public",
        key_prefix=key_prefix,
        public_endpoint=public_endpoint,
    )


def test_relative_publication_path_is_hash_and_filename():
    resource = make_resource(HASH, "logo.svg")

    assert relative_publication_path(resource) == f"{HASH}/logo.svg"
    assert relative_publication_path(resource) == relative_publication_path(resource)


def test_relative_publication_path_of_static_resource():
    resource = make_resource(HASH, "app.js", relative_publication_path="build/js/")

    assert relative_publication_path(resource) == "build/js/app.js"
    assert target_object_key("site/", resource) == "site/build/js/app.js"


def test_explicit_pattern_is_used_verbatim():
    resource = make_resource(HASH, "logo.svg")

    uri = render(resource, pattern="{baseUri}{sha1}/{filename}", base_uri="https://assets.example.com/")

    assert uri == f"https://assets.example.com/{HASH}/logo.svg"


def test_default_pattern_without_base_uri_uses_native_endpoint():
    resource = make_resource(HASH, "logo.svg")

    uri = render(resource, key_prefix="v1/")

    assert uri == f"https://acct.r2.cloudflarestorage.com/assets-public/v1/{HASH}/logo.svg"


def test_default_pattern_with_base_uri():
    resource = make_resource(HASH, "logo.svg")

    uri = render(resource, base_uri="https://cdn.example.com/", key_prefix="v1/")

    assert uri == f"https://cdn.example.com/v1/{HASH}/logo.svg"


def test_all_placeholders_are_substituted():
    resource = make_resource(HASH, "Logo.SVG")

    uri = render(
        resource,
        pattern="{baseUri}{containerName}/{keyPrefix}{fileExtension}/{sha1}/{filename}",
        base_uri="https://cdn.example.com/",
        key_prefix="p/",
    )

    assert uri == f"https://cdn.example.com/assets-public/p/svg/{HASH}/Logo.SVG"


def test_path_segments_are_encoded_individually():
    resource = make_resource(HASH, "my picture#1.jpg")

    uri = render(resource, base_uri="https://cdn.example.com:8443/")

    assert uri == f"https://cdn.example.com:8443/{HASH}/my%20picture%231.jpg"


def test_literal_pattern_text_and_base_path_are_encoded():
    resource = make_resource(HASH, "logo.svg")

    uri = render(
        resource,
        pattern="{baseUri}shared assets/{sha1}/{filename}",
        base_uri="https://cdn.example.com/my files/",
    )

    assert uri == f"https://cdn.example.com/my%20files/shared%20assets/{HASH}/logo.svg"


def test_existing_escapes_are_not_encoded_twice():
    resource = make_resource(HASH, "50% off.png")

    uri = render(resource, base_uri="https://cdn.example.com/my%20files/100%/")

    assert uri == f"https://cdn.example.com/my%20files/100%25/{HASH}/50%25%20off.png"


@pytest.mark.parametrize(
    "path,expected",
    [
        ("a/b c/d", "a/b%20c/d"),
        ("ä/ö.png", "%C3%A4/%C3%B6.png"),
        ("question?.txt", "question%3F.txt"),
    ],
)
def test_encode_path_segments(path, expected):
    assert encode_path_segments(path) == expected


def test_static_resource_uri_ignores_patterns():
    uri = render_static_resource_uri(
        "css/site style.css",
        container_name="assets-public",
        key_prefix="static/",
        public_endpoint="https://s3.amazonaws.com/",
    )

    assert uri == "https://s3.amazonaws.com/assets-public/static/css/site%20style.css"


@pytest.mark.parametrize(
    "uri,expected",
    [
        ("https://cdn.example.com/a b/c", "https://cdn.example.com/a%20b/c"),
        ("https://cdn.example.com/a%20b/c", "https://cdn.example.com/a%20b/c"),
        ("https://cdn.example.com/ä/x?v=1 2", "https://cdn.example.com/%C3%A4/x?v=1 2"),
        ("/relative path/file.png", "/relative%20path/file.png"),
    ],
)
def test_encode_uri_path_touches_only_the_path(uri, expected):
    assert encode_uri_path(uri) == expected


class TestPublicEndpoint:
    def test_r2_endpoint_from_account(self):
        config = BackendConfig.r2("https://acct.r2.cloudflarestorage.com", "key", "secret", account_name="acct")

        assert config.resolve_public_endpoint() == "https://acct.r2.cloudflarestorage.com/"

    def test_s3_default_endpoint(self):
        assert BackendConfig.s3().resolve_public_endpoint() == "https://s3.amazonaws.com/"

    def test_explicit_public_endpoint_gets_trailing_slash(self):
        config = BackendConfig.minio("http://minio:9000", "key", "secret", public_endpoint="https://files.example.com")

        assert config.resolve_public_endpoint() == "https://files.example.com/"

    def test_minio_without_public_endpoint_fails(self):
        with pytest.raises(ConfigurationError, match="configure public_endpoint"):
            BackendConfig.minio("http://minio:9000", "key", "secret").resolve_public_endpoint()


class TestTargetUris:
    def test_persistent_uri_on_native_endpoint(self):
        target = PublishTarget("public", MemoryObjectStore(), "assets-public", key_prefix="v1/")

        uri = target.public_persistent_resource_uri(make_resource(HASH, "logo.svg"))

        assert uri == f"https://public.example.com/assets-public/v1/{HASH}/logo.svg"

    def test_persistent_uri_with_base_uri_does_not_need_endpoint(self):
        store = MemoryObjectStore(public_endpoint_url="")
        target = PublishTarget("public", store, "assets-public", base_uri="https://cdn.example.com/")

        uri = target.public_persistent_resource_uri(make_resource(fake_sha1(1), "a.png"))

        assert uri == f"https://cdn.example.com/{fake_sha1(1)}/a.png"

    def test_static_uri(self):
        target = PublishTarget("public", MemoryObjectStore(), "assets-public", key_prefix="site/")

        uri = target.public_static_resource_uri("img/logo.png")

        assert uri == "https://public.example.com/assets-public/site/img/logo.png"
