"""
adhandshake Trust Builder

Turns the optional PEM certificate of a proposed configuration into the
trust anchors used for the authentication connection.

Uses the cryptography library for parsing. No custom certificate handling.

- Empty input: the system default trust store
- Otherwise: one or more PEM certificates, all of which must parse
- The result is request-scoped and never cached
"""

from __future__ import annotations

import ssl
from typing import Any, Dict, Optional, Tuple

import attrs
import structlog
from cryptography import x509
from ldap3 import Tls

from adhandshake.core.exceptions import ValidationError

PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
PEM_END = "-----END CERTIFICATE-----"


def normalize_pem(pem: Optional[str]) -> str:
    """Strip outer whitespace and normalize line endings."""
    data = (pem or "").strip()
    return data.replace("\r\n", "\n").replace("\r", "\n")


@attrs.define(frozen=True, slots=True)
class TrustAnchorSet:
    """
    Certificates accepted as issuers for the directory server.

    An empty set means the system default trust store.
    """

    certificates: Tuple[x509.Certificate, ...] = attrs.field(
        factory=tuple, converter=tuple, repr=False
    )
    pem: str = attrs.field(default="", repr=False)

    @property
    def is_system_default(self) -> bool:
        return not self.certificates

    @property
    def subjects(self) -> Tuple[str, ...]:
        """RFC 4514 subjects of the custom anchors."""
        return tuple(cert.subject.rfc4514_string() for cert in self.certificates)

    def ldap_tls(self, server_name: Optional[str] = None) -> Tls:
        """
        Build the ldap3 TLS settings for one connection.

        Server certificates are always verified. With no custom anchors
        ldap3 falls back to the system default trust store.
        """
        kwargs: Dict[str, Any] = {"validate": ssl.CERT_REQUIRED}
        if self.pem:
            kwargs["ca_certs_data"] = self.pem
        if server_name:
            kwargs["valid_names"] = [server_name]
            kwargs["sni"] = server_name
        return Tls(**kwargs)


@attrs.define
class TrustBuilder:
    """Parses certificate material into a TrustAnchorSet."""

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def build(self, certificate_pem: Optional[str] = None) -> TrustAnchorSet:
        """
        Build trust anchors from an optional PEM string.

        Args:
            certificate_pem: One or more PEM-encoded certificates, or empty

        Returns:
            TrustAnchorSet (system default when input is empty)

        Raises:
            ValidationError: If the input does not parse as PEM certificates
        """
        data = normalize_pem(certificate_pem)
        if not data:
            self._logger.debug("trust_system_default")
            return TrustAnchorSet()

        if PEM_BEGIN not in data or PEM_END not in data:
            raise ValidationError("could not parse certificate: no PEM certificate block found")

        # Nothing but certificate blocks.
        leftover = data
        while PEM_BEGIN in leftover:
            before, _, rest = leftover.partition(PEM_BEGIN)
            if before.strip():
                raise ValidationError("could not parse certificate: unexpected data outside PEM blocks")
            _, end, leftover = rest.partition(PEM_END)
            if not end:
                raise ValidationError("could not parse certificate: unterminated PEM block")
        if leftover.strip():
            raise ValidationError("could not parse certificate: unexpected data outside PEM blocks")

        try:
            certificates = x509.load_pem_x509_certificates(data.encode("utf-8"))
        except ValueError as e:
            self._logger.info("trust_parse_failed", error=str(e))
            raise ValidationError(f"could not parse certificate: {e}") from e

        trust = TrustAnchorSet(certificates=certificates, pem=data + "\n")
        self._logger.debug("trust_built", anchors=len(trust.certificates), subjects=trust.subjects)
        return trust
