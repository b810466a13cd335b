"""Pipeline stage engine: ordered stages, transition gating, and board reordering."""

__version__ = "0.1.0"
