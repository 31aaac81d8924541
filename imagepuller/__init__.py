"""
Expose public imagepuller interface
"""
from .auth import (
    BasicKeyring,
    Keyring,
    LazyCredential,
    ProvidersKeyring,
    UnionKeyring,
    build_keyring,
    load_docker_config,
)
from .exceptions import (
    AggregateError,
    AuthenticationError,
    CancelledError,
    FetchError,
    ImagePullerError,
    InvalidEndpointError,
    InvalidReferenceError,
    InvalidSecretError,
    NotFoundError,
    TransportError,
)
from .models import (
    Credential,
    ImageReference,
    PullSecret,
)
from .parsing import (
    normalize_endpoint,
    parse_image_name,
)
from .providers import (
    CredentialProvider,
    GoogleMetadataProvider,
    ProviderRegistry,
)
from .puller import (
    CancelToken,
    ImagePuller,
    pull_image,
)
from .registry import (
    Manifest,
    ManifestV1,
    ManifestV2,
    ManifestVersion,
    Registry,
    fetch_manifest,
)
from .transport import (
    curl_command,
    dump_response,
    log_exchange,
)
