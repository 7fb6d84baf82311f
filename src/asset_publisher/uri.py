"""
Publication paths and public URIs

Pure functions that map a resource to its key inside a target container and
to the URI it is served from.
"""

import re
from urllib.parse import quote, urlsplit, urlunsplit

from .constants import DEFAULT_PERSISTENT_RESOURCE_URI_PATTERN, NATIVE_PERSISTENT_RESOURCE_URI_PATTERN
from .models import Resource

# Left as they are when a rendered path is re-encoded; "%" keeps existing escapes intact
PATH_SAFE_CHARACTERS = "!$&'()*+,;=:@%"

LONE_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")


def relative_publication_path(resource: Resource) -> str:
    """
    Relative path and filename of a resource inside a target.

    Static resources carry their own relative path; persistent resources
    are addressed by content hash.

    Returns:
        str: for example "c828d0f88ce197be1aff7cc2e5e86b1244241ac6/MyPicture.jpg"
    """
    if resource.relative_publication_path:
        return f"{resource.relative_publication_path}{resource.filename}"
    return f"{resource.sha1}/{resource.filename}"


def target_object_key(key_prefix: str, resource: Resource) -> str:
    return f"{key_prefix}{relative_publication_path(resource)}"


def encode_path_segments(path: str) -> str:
    """Percent-encode every "/"-delimited segment of a path on its own."""
    return "/".join(quote(segment, safe="") for segment in path.split("/"))


def encode_uri_path(uri: str) -> str:
    """
    Percent-encode the path of a rendered URI segment by segment.

    Literal pattern text and the path of a base URI can carry spaces or other
    characters that are not allowed in a path. Escapes already present, such as
    the ones in substituted values, are kept as they are.
    """
    parts = urlsplit(uri)
    segments = [quote(LONE_PERCENT.sub("%25", segment), safe=PATH_SAFE_CHARACTERS) for segment in parts.path.split("/")]
    return urlunsplit(parts._replace(path="/".join(segments)))


def select_persistent_resource_uri_pattern(pattern: str, base_uri: str, public_endpoint: str) -> tuple[str, str]:
    """
    Choose the URI pattern and base URI for persistent resources.

    - explicit pattern: used verbatim with the configured base URI
    - no pattern, no base URI: the backend's native endpoint, including the container
    - no pattern, base URI: "{baseUri}{keyPrefix}{sha1}/{filename}"

    Returns:
        tuple: (pattern, base_uri)
    """
    if pattern:
        return pattern, base_uri
    if not base_uri:
        return NATIVE_PERSISTENT_RESOURCE_URI_PATTERN, public_endpoint
    return DEFAULT_PERSISTENT_RESOURCE_URI_PATTERN, base_uri


def render_persistent_resource_uri(
    resource: Resource,
    *,
    pattern: str,
    base_uri: str,
    container_name: str,
    key_prefix: str,
    public_endpoint: str,
) -> str:
    """Render the public URI of a persistent resource."""
    pattern, base_uri = select_persistent_resource_uri_pattern(pattern, base_uri, public_endpoint)

    # Values are encoded before substitution, so a "#" or "?" in a filename cannot
    # end the path; the whole path is encoded once more afterwards
    variables = {
        "{baseUri}": base_uri,
        "{containerName}": encode_path_segments(container_name),
        "{keyPrefix}": encode_path_segments(key_prefix),
        "{sha1}": resource.sha1,
        "{filename}": encode_path_segments(resource.filename),
        "{fileExtension}": encode_path_segments(resource.file_extension),
    }

    uri = pattern
    for placeholder, replacement in variables.items():
        uri = uri.replace(placeholder, replacement)

    return encode_uri_path(uri)


def render_static_resource_uri(relative_path: str, *, container_name: str, key_prefix: str, public_endpoint: str) -> str:
    """Render the public URI of a static resource. Never goes through the pattern system."""
    return encode_uri_path(f"{public_endpoint}{container_name}/{key_prefix}{encode_path_segments(relative_path)}")
