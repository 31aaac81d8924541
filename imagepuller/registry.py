"""
Module implementing the manifest fetch against the v2 docker registry API.

See https://docs.docker.com/registry/spec/api/
"""
import abc
from collections import OrderedDict
import enum
from functools import partialmethod
import hashlib
import json
import logging
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
)
import urllib.parse

import requests

from .exceptions import (
    AuthenticationError,
    FetchError,
    InvalidReferenceError,
    NotFoundError,
    TransportError,
)
from .models import DEFAULT_TIMEOUT, Credential

LOGGER = logging.getLogger(__name__)

ResponseHook = Callable[..., Any]


def _split_quote(s: str, dels: str, quotes: str = '"', escape: str = "\\") -> List[str]:
    """
    Split s by any character present in dels. However treat anything
    surrounded by a character in quotes as a literal. Additionally
    any character preceeded by escape is treated as a literal.

    Returns a list of split tokens with the split delimeter between each token.
    The length of the result will always be odd with the even indexed elements
    being the split data and the odd indexed elements being the delimeters
    between the even elements.

    _split_quote('a="b,c",d=f', '=,') => ['a', '=', 'b,c', ',', 'd', '=', 'f']
    """
    part: List[str] = []
    result: List[str] = []

    quote = None
    for ch in s:
        if part and part[-1] == escape:
            part[-1] = ch
        elif quote and ch == quote:
            quote = None
        elif quote:
            part.append(ch)
        elif ch in dels:
            result.append("".join(part))
            result.append(ch)
            part.clear()
        elif ch in quotes:
            quote = ch
        else:
            part.append(ch)
    result.append("".join(part))

    return result


def parse_bearer_challenge(www_auth: str) -> Optional[Dict[str, str]]:
    """
    Returns the parameters of a "Bearer" WWW-Authenticate challenge, or None
    if the header holds a different challenge.
    """
    if not www_auth.startswith("Bearer "):
        return None
    auth_parts = _split_quote(www_auth[7:], "=,")
    return {
        auth_parts[i].strip(): auth_parts[i + 2]
        for i in range(0, len(auth_parts) - 2, 4)
    }


class RegistryAuthenticator:
    """
    Wrapper around registry HTTP requests that invokes the necessary
    auth endpoint if needed. This is used by the docker.io registry.

    See https://docs.docker.com/registry/spec/auth/token/
    """

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self.session = session or requests.Session()
        self.access_tokens: Dict[Tuple[str, str], str] = {}

    @staticmethod
    def auth_key(url: str) -> Tuple[str, str]:
        """
        Returns a hashable key for the domain covered by the registry url.
        """
        url_data = urllib.parse.urlparse(url)
        path_parts = url_data.path.split("/")
        return (url_data.hostname or "", "/".join(path_parts[0:4]))

    def request(
        self,
        url: str,
        *,
        method="GET",
        auth: Optional[Tuple[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
        **kwargs,
    ) -> requests.Response:
        """
        Makes a request to a registry
        """
        auth_key = self.auth_key(url)
        headers = dict(headers or {})
        for attempt in range(2):
            # Select auth mode.
            auth_token = self.access_tokens.get(auth_key)
            basic_auth = None
            if auth_token:
                headers["Authorization"] = "Bearer " + auth_token
            else:
                basic_auth = auth

            if basic_auth:
                kwargs["auth"] = basic_auth
            else:
                kwargs.pop("auth", None)

            # Attempt to make request.
            resp = self.session.request(method, url, headers=headers, **kwargs)

            if attempt > 0 or resp.status_code != 401:
                break

            # Attempt to generate new auth token if we got a 401.
            auth_args = parse_bearer_challenge(resp.headers.get("WWW-Authenticate", ""))
            if not auth_args:
                break
            realm = auth_args.pop("realm", None)
            if not realm:
                break

            auth_resp = self.session.get(
                realm + "?" + urllib.parse.urlencode(auth_args),
                auth=auth,
                timeout=kwargs.get("timeout"),
                verify=kwargs.get("verify"),
                cert=kwargs.get("cert"),
                hooks=kwargs.get("hooks"),
            )
            if auth_resp.status_code != 200:
                LOGGER.debug(
                    "Token request to %s failed with %d", realm, auth_resp.status_code
                )
                break

            token_data = auth_resp.json()
            if not isinstance(token_data, Mapping):
                raise ValueError("token response from {} is not a JSON object".format(realm))
            token = token_data.get("token") or token_data.get("access_token")
            if not token:
                break
            self.access_tokens[auth_key] = token

        return resp


class ManifestVersion(enum.Enum):
    """
    Schema version tag of a manifest.
    """

    V1 = 1
    V2 = 2


class Manifest(metaclass=abc.ABCMeta):
    """
    Represents a manifest loaded into memory.
    """

    version: ManifestVersion

    def __init__(self, content: Mapping[str, Any], digest: Optional[str] = None) -> None:
        self.content = content
        self._digest = digest

    def serialize(self, strip_signature=False) -> bytes:
        """
        Serialize the manifest into its canonical form.
        """
        hash_content = self.content
        if (
            strip_signature
            and self.version is ManifestVersion.V1
            and "signatures" in hash_content
        ):
            hash_content = OrderedDict(hash_content)
            del hash_content["signatures"]

        return json.dumps(hash_content, indent=3, separators=(",", ": ")).encode(
            "UTF-8"
        )

    def digest(self) -> str:
        """
        Return the digest of the manifest in HASHALG:HASH format.
        """
        if self._digest is None:
            h = hashlib.sha256()
            h.update(self.serialize(strip_signature=True))
            self._digest = "sha256:" + h.hexdigest()
        return self._digest

    @classmethod
    @abc.abstractmethod
    def media_types(cls) -> Tuple[str, ...]:
        """
        Returns a tuple of media types for the manifest type.
        """

    def media_type(self) -> str:
        """
        Return the media type of this manifest.
        """
        return self.media_types()[0]

    @abc.abstractmethod
    def layer_digests(self) -> List[str]:
        """
        Returns the digests of the blobs the manifest refers to.
        """

    def __repr__(self) -> str:
        return "{}({})".format(type(self).__name__, self.digest())


class ManifestV1(Manifest):
    """
    Represents the signed schema1 manifest.

    See https://docs.docker.com/registry/spec/manifest-v2-1/
    """

    version = ManifestVersion.V1

    @classmethod
    def media_types(cls) -> Tuple[str, ...]:
        return (
            "application/vnd.docker.distribution.manifest.v1+prettyjws",
            "application/vnd.docker.distribution.manifest.v1+json",
        )

    def layer_digests(self) -> List[str]:
        return [layer["blobSum"] for layer in self.content.get("fsLayers", [])]

    def media_type(self) -> str:
        """
        Returns the media type of this manifest. This depends on whether the
        "signatures" payload is present.
        """
        if "signatures" in self.content:
            return self.media_types()[0]
        return self.media_types()[1]


class ManifestV2(Manifest):
    """
    Represents a schema2 manifest.

    See https://docs.docker.com/registry/spec/manifest-v2-2/
    """

    version = ManifestVersion.V2

    @classmethod
    def media_types(cls) -> Tuple[str, ...]:
        return ("application/vnd.docker.distribution.manifest.v2+json",)

    def layer_digests(self) -> List[str]:
        digests = [self.content["config"]["digest"]]
        for layer in self.content.get("layers", []):
            digests.append(layer["digest"])
        return digests


MANIFEST_TYPES: Sequence[Type[Manifest]] = (ManifestV2, ManifestV1)
MANIFEST_MEDIA_TYPE_MAP = dict(
    (media_type, manifest_type)
    for manifest_type in MANIFEST_TYPES
    for media_type in manifest_type.media_types()
)


def manifest_from_response(response: requests.Response) -> Manifest:
    """
    Decode a manifest response, picking the manifest type from the response
    content type. Untyped schema 1 documents are accepted as ManifestV1.
    """
    content = json.loads(response.text, object_pairs_hook=OrderedDict)
    if not isinstance(content, Mapping):
        raise ValueError("manifest is not a JSON object")

    content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
    manifest_type = MANIFEST_MEDIA_TYPE_MAP.get(content_type)
    if manifest_type is None:
        if content.get("schemaVersion") != 1:
            raise ValueError("unsupported manifest type {!r}".format(content_type))
        manifest_type = ManifestV1
    return manifest_type(content, response.headers.get("Docker-Content-Digest"))


class Registry:
    """
    Represents a docker registry reached through one base URL and one set of
    credentials.
    """

    def __init__(
        self,
        url: str,
        user: Optional[Tuple[str, str]] = None,
        verify: Optional[str] = None,
        client_cert: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        hooks: Sequence[ResponseHook] = (),
        requester: Optional[RegistryAuthenticator] = None,
    ) -> None:
        self.base_url = url.rstrip("/")
        self.user = user
        self.verify = verify
        self.client_cert = client_cert
        self.timeout = timeout
        self.hooks = list(hooks)
        self.requester = requester or RegistryAuthenticator()

    def __str__(self) -> str:
        """
        Return the name of this registry.
        """
        return self.base_url

    def request(
        self, path: str, method="GET", raise_for_status=True, **kwargs
    ) -> requests.Response:
        """
        Makes a request to the registry.
        """
        request_kwargs: Dict[str, Any] = dict(
            verify=self.verify,
            cert=self.client_cert,
            auth=self.user,
            headers={"Accept": ", ".join(MANIFEST_MEDIA_TYPE_MAP)},
            allow_redirects=True,
            timeout=self.timeout,
            hooks={"response": list(self.hooks)},
        )
        request_kwargs["headers"].update(kwargs.pop("headers", {}))
        request_kwargs.update(kwargs)

        resp = self.requester.request(
            self.base_url + path, method=method, **request_kwargs
        )
        if raise_for_status:
            resp.raise_for_status()
        return resp

    get = partialmethod(request, method="GET")

    def manifest(self, repository: str, ref: str) -> Manifest:
        """
        Fetches the manifest of repository at ref (a tag or a digest).
        """
        resp = self.get("/v2/{}/manifests/{}".format(repository, ref))
        return manifest_from_response(resp)


def _error_for_status(status_code: Optional[int]) -> Type[FetchError]:
    if status_code in (401, 403):
        return AuthenticationError
    if status_code == 404:
        return NotFoundError
    return TransportError


def fetch_manifest(
    repository: str,
    ref: str,
    credential: Credential,
    *,
    verify: Optional[str] = None,
    client_cert: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
    hooks: Sequence[ResponseHook] = (),
) -> Manifest:
    """
    Fetch the manifest of repository at ref from the credential's server,
    authenticating with the credential if it carries a user.
    """
    if not ref:
        raise InvalidReferenceError("no tag or digest given for {}".format(repository))

    server = credential.server_address
    error_args = dict(repository=repository, ref=ref, server_address=server)
    with requests.Session() as session:
        registry = Registry(
            server,
            user=credential.basic_auth(),
            verify=verify,
            client_cert=client_cert,
            timeout=timeout,
            hooks=hooks,
            requester=RegistryAuthenticator(session),
        )
        try:
            manifest = registry.manifest(repository, ref)
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            raise _error_for_status(status_code)(
                "fetching {}:{} from {} failed: {}".format(repository, ref, server, exc),
                status_code=status_code,
                **error_args,
            ) from exc
        except (requests.RequestException, ValueError) as exc:
            raise TransportError(
                "fetching {}:{} from {} failed: {}".format(repository, ref, server, exc),
                **error_args,
            ) from exc

    LOGGER.info(
        "Fetched %s manifest %s from %s", manifest.version.name, manifest.digest(), server
    )
    return manifest
