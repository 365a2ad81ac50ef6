"""RFC 8705 mutual-TLS client certificate wiring.

Copyright (c) 2025 Tokenflow. All rights reserved.
"""

from __future__ import annotations

import ssl
import tempfile
from pathlib import Path

import httpx
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .exceptions import ConfigurationError
from .models.oauth_models import TLSAuth


def validate_tls_auth(tls: TLSAuth) -> None:
    """Check that the certificate and key parse and belong together.

    Raises:
        ConfigurationError: If either PEM is invalid or the pair does not match.

    """
    try:
        certificate = x509.load_pem_x509_certificate(tls.certificate.encode("utf-8"))
    except ValueError as e:
        raise ConfigurationError("could not parse client certificate PEM") from e
    try:
        key = serialization.load_pem_private_key(tls.key.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError("could not parse client key PEM") from e

    cert_public = certificate.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    key_public = key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    if cert_public != key_public:
        raise ConfigurationError("client certificate does not match the private key")


def _ssl_context(tls: TLSAuth, base: ssl.SSLContext | None) -> ssl.SSLContext:
    if base is None:
        context = ssl.create_default_context()
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = base.check_hostname
        context.verify_mode = base.verify_mode
        context.options |= base.options
        context.minimum_version = base.minimum_version
        context.maximum_version = base.maximum_version
        roots = base.get_ca_certs(binary_form=True)
        if roots:
            context.load_verify_locations(cadata=b"".join(roots))
        else:
            # Roots loaded lazily from a system directory are not listed.
            context.load_default_certs()

    # ssl only loads key pairs from files.
    with tempfile.TemporaryDirectory(prefix="tokenflow-") as directory:
        cert_path = Path(directory, "client.crt")
        key_path = Path(directory, "client.key")
        cert_path.write_text(tls.certificate, encoding="utf-8")
        key_path.write_text(tls.key, encoding="utf-8")
        try:
            context.load_cert_chain(cert_path, key_path)
        except ssl.SSLError as e:
            raise ConfigurationError("could not load client key pair") from e
    return context


def _proxy_of(pool: object) -> httpx.Proxy | None:
    proxy_url = getattr(pool, "_proxy_url", None)
    if proxy_url is None:
        return None
    url = f"{proxy_url.scheme.decode('ascii')}://{proxy_url.host.decode('ascii')}"
    if proxy_url.port is not None:
        url = f"{url}:{proxy_url.port}"
    headers = [
        (key.decode("latin-1"), value.decode("latin-1"))
        for key, value in getattr(pool, "_proxy_headers", [])
    ]
    return httpx.Proxy(url, headers=headers, ssl_context=getattr(pool, "_proxy_ssl_context", None))


def _with_certificate(transport: object, tls: TLSAuth) -> httpx.AsyncHTTPTransport:
    """Rebuild ``transport`` with the same pool, proxy and trust settings plus ``tls``."""
    if not isinstance(transport, httpx.AsyncHTTPTransport):
        raise ConfigurationError(
            "transport of type httpx.AsyncHTTPTransport required on http_client"
        )
    pool = getattr(transport, "_pool", None)
    if type(pool).__name__ == "AsyncSOCKSProxy":
        raise ConfigurationError("client certificates cannot be added to a SOCKS proxy transport")
    limits = httpx.Limits(
        max_connections=getattr(pool, "_max_connections", None),
        max_keepalive_connections=getattr(pool, "_max_keepalive_connections", None),
        keepalive_expiry=getattr(pool, "_keepalive_expiry", 5.0),
    )
    return httpx.AsyncHTTPTransport(
        verify=_ssl_context(tls, getattr(pool, "_ssl_context", None)),
        http1=getattr(pool, "_http1", True),
        http2=getattr(pool, "_http2", False),
        limits=limits,
        proxy=_proxy_of(pool),
        retries=getattr(pool, "_retries", 0),
    )


def with_client_certificate(
    http_client: httpx.AsyncClient | None,
    tls: TLSAuth,
) -> httpx.AsyncClient:
    """Return a client that presents the ``tls`` certificate on every handshake.

    The supplied client is not modified. Its trust roots, proxy mounts,
    timeout, headers, cookies, redirect policy, event hooks and connection
    limits carry over to the new client, which the caller must close.

    Args:
        http_client: Client whose settings should be kept, or None
        tls: Client certificate and key

    Returns:
        A new ``httpx.AsyncClient``.

    Raises:
        ConfigurationError: If the key pair is invalid or one of the client's
            transports is not an ``httpx.AsyncHTTPTransport``.

    """
    validate_tls_auth(tls)
    if http_client is None:
        return httpx.AsyncClient(
            transport=httpx.AsyncHTTPTransport(verify=_ssl_context(tls, None))
        )

    transport = _with_certificate(getattr(http_client, "_transport", None), tls)
    mounts = {
        pattern.pattern: None if mounted is None else _with_certificate(mounted, tls)
        for pattern, mounted in getattr(http_client, "_mounts", {}).items()
    }
    return httpx.AsyncClient(
        transport=transport,
        mounts=mounts,
        timeout=http_client.timeout,
        headers=http_client.headers,
        cookies=http_client.cookies,
        follow_redirects=http_client.follow_redirects,
        max_redirects=http_client.max_redirects,
        event_hooks=http_client.event_hooks,
        trust_env=http_client.trust_env,
    )
