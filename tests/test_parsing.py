"""
Tests for the imagepuller.parsing module
"""
import unittest

from imagepuller.exceptions import InvalidEndpointError, InvalidReferenceError
from imagepuller.parsing import normalize_endpoint, parse_image_name

DIGEST = "sha256:a54f1be7edda4305e59544ef4014494206245be08422258d6677ff273223c5a8"


class ParseImageNameTest(unittest.TestCase):
    """
    parse_image_name tests
    """

    def _check_image(self, name, host, repo, tag="", digest="") -> None:
        """
        Test assertions of an image name parse.
        """
        ref = parse_image_name(name)
        self.assertEqual(ref.registry_host, host)
        self.assertEqual(ref.repository, repo)
        self.assertEqual(ref.tag, tag)
        self.assertEqual(ref.digest, digest)

    def test_default_registry(self) -> None:
        """Test names without a registry host"""
        self._check_image("nginx:1.13", "docker.io", "nginx", tag="1.13")
        self._check_image(
            "appscode/voyager:6.0.0", "docker.io", "appscode/voyager", tag="6.0.0"
        )
        self._check_image(
            "notahost/msg:1", "docker.io", "notahost/msg", tag="1"
        )

    def test_explicit_registry(self) -> None:
        """Test names that start with a registry host"""
        self._check_image(
            "docker.io/appscode/voyager:6.0.0",
            "docker.io",
            "appscode/voyager",
            tag="6.0.0",
        )
        self._check_image(
            "k8s.gcr.io/kube-proxy-amd64:v1.10.0",
            "k8s.gcr.io",
            "kube-proxy-amd64",
            tag="v1.10.0",
        )
        self._check_image(
            "cbir.clinc.ai/clinc/worker/gpu:v0.7.9",
            "cbir.clinc.ai",
            "clinc/worker/gpu",
            tag="v0.7.9",
        )
        self._check_image("localhost/msg:1", "localhost", "msg", tag="1")
        self._check_image("localhost:5000/msg:1", "localhost:5000", "msg", tag="1")
        self._check_image("Quay.IO/org/app:2", "quay.io", "org/app", tag="2")

    def test_explicit_protocol(self) -> None:
        """Test names with a protocol prefix"""
        self._check_image("http://localhost/msg:1", "http://localhost", "msg", tag="1")
        self._check_image(
            "https://isahost/msg:latest", "https://isahost", "msg", tag="latest"
        )

    def test_digest(self) -> None:
        """Test digest refs, which win over tags"""
        self._check_image(
            "appscode/docker-image-puller@" + DIGEST,
            "docker.io",
            "appscode/docker-image-puller",
            digest=DIGEST,
        )
        self._check_image(
            "quay.io/org/app:1.0@" + DIGEST, "quay.io", "org/app", digest=DIGEST
        )
        self.assertEqual(parse_image_name("org/app@" + DIGEST).ref, DIGEST)

    def test_no_ref(self) -> None:
        """Test that no latest default is applied"""
        ref = parse_image_name("appscode/voyager")
        self.assertEqual(ref.tag, "")
        self.assertEqual(ref.digest, "")
        self.assertEqual(ref.ref, "")

    def test_remote_name(self) -> None:
        """Test the library namespace of official Docker Hub images"""
        ref = parse_image_name("nginx:1.13")
        self.assertEqual(ref.remote_name, "library/nginx")
        self.assertEqual(ref.lookup_key, "docker.io/library/nginx")

        ref = parse_image_name("docker.io/appscode/voyager:6.0.0")
        self.assertEqual(ref.remote_name, "appscode/voyager")

        for name in (
            "index.docker.io/nginx:1",
            "https://docker.io/nginx:1",
            "http://index.docker.io/nginx:1",
            "registry-1.docker.io/nginx:1",
        ):
            ref = parse_image_name(name)
            self.assertEqual(ref.remote_name, "library/nginx", msg=name)


        ref = parse_image_name("http://localhost:5000/msg:1")
        self.assertEqual(ref.remote_name, "msg")
        self.assertEqual(ref.lookup_key, "localhost:5000/msg")

    def test_deterministic(self) -> None:
        """Test that parsing the same name twice gives the same result"""
        for name in (
            "nginx:1.13",
            "gcr.io/tigerworks-kube/docker-image-puller:latest",
            "appscode/docker-image-puller@" + DIGEST,
        ):
            self.assertEqual(parse_image_name(name), parse_image_name(name))
            self.assertEqual(
                parse_image_name(str(parse_image_name(name))), parse_image_name(name)
            )

    def test_invalid(self) -> None:
        """Test malformed references"""
        for name in (
            "",
            " nginx:1",
            "onlyhost",
            "localhost",
            "quay.io/",
            "a//b:1",
            "Upper/case:1",
            "nginx:",
            "nginx:bad/tag",
            "nginx@sha256:abc",
            "ftp://host/app:1",
            "https://",
            "bad_host.io:x/app:1",
        ):
            with self.assertRaises(InvalidReferenceError, msg=name):
                parse_image_name(name)


class NormalizeEndpointTest(unittest.TestCase):
    """
    normalize_endpoint tests
    """

    def test_hub_aliases(self) -> None:
        """Test that every hub alias maps to the hub API host"""
        for host in (
            "docker.io",
            "index.docker.io",
            "https://docker.io",
            "https://index.docker.io/v1/",
            "docker.io:443",
            "registry-1.docker.io",
        ):
            self.assertEqual(normalize_endpoint(host), "https://registry-1.docker.io")

    def test_scheme(self) -> None:
        """Test that https is the default scheme and explicit schemes stay"""
        self.assertEqual(normalize_endpoint("quay.io"), "https://quay.io")
        self.assertEqual(normalize_endpoint("k8s.gcr.io"), "https://k8s.gcr.io")
        self.assertEqual(
            normalize_endpoint("http://localhost:5000"), "http://localhost:5000"
        )
        self.assertEqual(
            normalize_endpoint("https://myregistry.example.com/"),
            "https://myregistry.example.com",
        )

    def test_idempotent(self) -> None:
        """Test that normalizing a canonical endpoint is a no-op"""
        for host in ("docker.io", "quay.io", "http://localhost:5000", "gcr.io:8443"):
            endpoint = normalize_endpoint(host)
            self.assertEqual(normalize_endpoint(endpoint), endpoint)

    def test_invalid(self) -> None:
        """Test hosts that do not make a URL"""
        for host in ("", "bad host", "host:abc", "host:99999", "https://", "u@host"):
            with self.assertRaises(InvalidEndpointError, msg=host):
                normalize_endpoint(host)


if __name__ == "__main__":
    unittest.main()
