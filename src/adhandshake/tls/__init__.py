"""adhandshake TLS trust material."""

from adhandshake.tls.trust import TrustAnchorSet, TrustBuilder

__all__ = [
    "TrustAnchorSet",
    "TrustBuilder",
]
