"""LDAP v3 building blocks: BER packets, result errors, DNs, search filters, connections and DIGEST-MD5 helpers."""

__version__ = "0.1.0"

__all__ = ["ber", "errors", "dn", "filter", "conn", "sasl"]