"""
Parsing of image references and registry endpoints.

Neither function touches the network.
"""
import re
import urllib.parse

from .exceptions import InvalidEndpointError, InvalidReferenceError
from .models import (
    DEFAULT_REGISTRY_HOST,
    DOCKER_HUB_ALIASES,
    DOCKER_HUB_HOST,
    ImageReference,
)

_HOST_RE = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?(?::[0-9]+)?")
_REPO_COMPONENT_RE = re.compile(r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*")
_TAG_RE = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}")
_DIGEST_RE = re.compile(
    r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
)


def _looks_like_host(part: str) -> bool:
    """
    Returns true if the first path segment of a reference names a registry.
    """
    return "." in part or ":" in part or part == "localhost"


def is_digest_ref(ref: str) -> bool:
    """
    Returns true if ref is a digest ref.
    """
    return bool(_DIGEST_RE.fullmatch(ref))


def parse_image_name(name: str) -> ImageReference:
    """
    Extract out the registry host, image repo, tag and digest from an image
    string.

    urllib.parse does not work appropriately for this task.
    """
    if not name or name.strip() != name:
        raise InvalidReferenceError("invalid image reference {!r}".format(name))

    # Extract protocol if present. A protocol forces the first token to be
    # treated as the registry host.
    prot = None
    rest = name
    prot_start = rest.find("://")
    if prot_start != -1:
        prot = rest[0:prot_start].lower()
        rest = rest[prot_start + 3 :]
        if prot not in ("http", "https"):
            raise InvalidReferenceError("unknown registry protocol in {}".format(name))

    digest = ""
    digest_start = rest.find("@")
    if digest_start != -1:
        digest = rest[digest_start + 1 :]
        rest = rest[0:digest_start]
        if not is_digest_ref(digest):
            raise InvalidReferenceError("invalid digest in {}".format(name))

    reg_part, *slash_parts = rest.split("/")
    implicit_registry = False
    if prot is not None or (slash_parts and _looks_like_host(reg_part)):
        if not slash_parts:
            raise InvalidReferenceError("no repository in {}".format(name))
        if not _HOST_RE.fullmatch(reg_part):
            raise InvalidReferenceError("invalid registry host in {}".format(name))
        registry_host = (prot + "://" if prot else "") + reg_part.lower()
    else:
        registry_host = DEFAULT_REGISTRY_HOST
        implicit_registry = True
        slash_parts.insert(0, reg_part)

    # Extract out the tag specifier.
    tag = ""
    tag_start = slash_parts[-1].find(":")
    if tag_start != -1:
        tag = slash_parts[-1][tag_start + 1 :]
        slash_parts[-1] = slash_parts[-1][0:tag_start]
        if not _TAG_RE.fullmatch(tag):
            raise InvalidReferenceError("invalid tag in {}".format(name))

    for part in slash_parts:
        if not _REPO_COMPONENT_RE.fullmatch(part):
            raise InvalidReferenceError(
                "invalid repository component {!r} in {}".format(part, name)
            )

    # A lone word with nothing to pull could just as well be a registry host.
    if implicit_registry and len(slash_parts) == 1 and not (tag or digest):
        raise InvalidReferenceError("no repository segment in {}".format(name))

    # The digest pins the content, a tag next to it carries no information.
    if digest:
        tag = ""

    return ImageReference(registry_host, "/".join(slash_parts), tag=tag, digest=digest)


def normalize_endpoint(host: str) -> str:
    """
    Map a registry host to the base URL its API is served from.

    Docker Hub aliases are rewritten to the hub API host and hosts without a
    scheme default to https. Only the scheme and network location survive.
    """
    if not host:
        raise InvalidEndpointError("empty registry host")

    scheme = "https"
    bare = host
    for prefix in ("https://", "http://"):
        if host.lower().startswith(prefix):
            scheme = prefix[:-3]
            bare = host[len(prefix) :]
            break

    if bare.lower().startswith(DOCKER_HUB_ALIASES):
        bare = DOCKER_HUB_HOST

    url = scheme + "://" + bare
    if any(ch.isspace() for ch in url):
        raise InvalidEndpointError("invalid registry endpoint {!r}".format(host))
    try:
        parsed = urllib.parse.urlsplit(url)
        # The port property raises ValueError for out of range ports.
        valid = bool(parsed.hostname) and parsed.port != 0 and not parsed.username
    except ValueError as exc:
        raise InvalidEndpointError(
            "invalid registry endpoint {!r}".format(host)
        ) from exc

    if not valid:
        raise InvalidEndpointError("invalid registry endpoint {!r}".format(host))

    return "{}://{}".format(parsed.scheme, parsed.netloc.lower())
