"""LDAP v3 client: BER packets, distinguished names, entries, write requests, connections and binds."""

__version__ = "0.1.0"

__all__ = ["ber", "client", "conn", "dn", "entry", "requests", "sasl"]