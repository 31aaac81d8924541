"""
Plain data records shared by the parser, keyring and puller.
"""
import base64
import binascii
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import InvalidSecretError

DEFAULT_REGISTRY_HOST = "docker.io"
OFFICIAL_NAMESPACE = "library"
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io")
DOCKER_HUB_HOST = "registry-1.docker.io"

# Seconds to wait on any single registry or metadata request.
DEFAULT_TIMEOUT = 30.0

SECRET_TYPE_DOCKER_CONFIG_JSON = "kubernetes.io/dockerconfigjson"
SECRET_TYPE_DOCKERCFG = "kubernetes.io/dockercfg"
SECRET_DATA_KEYS = {
    SECRET_TYPE_DOCKER_CONFIG_JSON: ".dockerconfigjson",
    SECRET_TYPE_DOCKERCFG: ".dockercfg",
}


class ImageReference:
    """
    A parsed image reference. At most one of tag and digest is set.
    """

    def __init__(
        self,
        registry_host: str,
        repository: str,
        tag: str = "",
        digest: str = "",
    ) -> None:
        self.registry_host = registry_host
        self.repository = repository
        self.tag = tag
        self.digest = digest

    @property
    def ref(self) -> str:
        """
        Returns the tag if present, otherwise the digest. Empty when the
        reference carried neither.
        """
        return self.tag or self.digest

    @property
    def bare_host(self) -> str:
        """
        Returns the registry host without its scheme.
        """
        host = self.registry_host
        scheme_end = host.find("://")
        if scheme_end != -1:
            host = host[scheme_end + 3 :]
        return host.lower()

    @property
    def remote_name(self) -> str:
        """
        Returns the repository path as served by the registry. Single segment
        Docker Hub names live in the "library" namespace.
        """
        if (
            self.bare_host in DOCKER_HUB_ALIASES + (DOCKER_HUB_HOST,)
            and "/" not in self.repository
        ):
            return OFFICIAL_NAMESPACE + "/" + self.repository
        return self.repository

    @property
    def lookup_key(self) -> str:
        """
        Returns the host qualified repository used for keyring lookups.
        """
        return self.bare_host + "/" + self.remote_name

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ImageReference):
            return NotImplemented
        return (
            self.registry_host == other.registry_host
            and self.repository == other.repository
            and self.tag == other.tag
            and self.digest == other.digest
        )

    def __repr__(self) -> str:
        return "ImageReference({!r}, {!r}, tag={!r}, digest={!r})".format(
            self.registry_host, self.repository, self.tag, self.digest
        )

    def __str__(self) -> str:
        name = self.registry_host + "/" + self.repository
        if self.digest:
            return name + "@" + self.digest
        if self.tag:
            return name + ":" + self.tag
        return name


class Credential:
    """
    Authorization information for one registry.
    """

    def __init__(
        self,
        username: str = "",
        password: str = "",
        auth: str = "",
        server_address: str = "",
    ) -> None:
        self.username = username
        self.password = password
        self.auth = auth
        self.server_address = server_address

    def basic_auth(self) -> Optional[Tuple[str, str]]:
        """
        Returns the (username, password) pair to authenticate with, decoding
        the combined auth form if no username was given. Returns None for
        anonymous credentials.
        """
        if self.username:
            return (self.username, self.password)
        if self.auth:
            return decode_auth(self.auth)
        return None

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Credential):
            return NotImplemented
        return (
            self.username == other.username
            and self.password == other.password
            and self.auth == other.auth
            and self.server_address == other.server_address
        )

    def __repr__(self) -> str:
        return "Credential(username={!r}, server_address={!r})".format(
            self.username, self.server_address
        )


def decode_auth(auth: str) -> Tuple[str, str]:
    """
    Decode a base64 "user:password" auth string.
    """
    try:
        decoded = base64.b64decode(auth, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise InvalidSecretError("auth field is not valid base64") from exc

    user, sep, password = decoded.partition(":")
    if not sep:
        raise InvalidSecretError("auth field is not in user:password form")
    return (user, password)


class PullSecret:
    """
    A credential bearing secret as stored in a cluster. The data values are
    the raw (already base64 decoded) secret payloads.
    """

    def __init__(self, name: str, type: str, data: Mapping[str, bytes]) -> None:
        self.name = name
        self.type = type
        self.data = dict(data)

    @classmethod
    def from_dict(cls, obj: Mapping[str, Any]) -> "PullSecret":
        """
        Build a PullSecret from a Kubernetes Secret API object.
        """
        name = obj.get("metadata", {}).get("name", "")
        data: Dict[str, bytes] = {}
        for key, value in (obj.get("data") or {}).items():
            try:
                data[key] = base64.b64decode(value, validate=True)
            except binascii.Error as exc:
                raise InvalidSecretError(
                    "secret {} has invalid base64 data in {}".format(name, key)
                ) from exc
        return cls(name, obj.get("type", ""), data)

    def payload(self) -> Optional[bytes]:
        """
        Returns the docker config payload of the secret, or None if the secret
        does not hold pull credentials.
        """
        data_key = SECRET_DATA_KEYS.get(self.type)
        if data_key is None:
            return None
        return self.data.get(data_key)

    def __repr__(self) -> str:
        return "PullSecret({!r}, {!r})".format(self.name, self.type)
