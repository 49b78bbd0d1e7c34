"""Model kit references, Kitfile checks, layer packing and local serving helpers."""

__version__ = "0.1.0"