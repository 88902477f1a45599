"""Configuration, exceptions, identifiers, clock and locking primitives."""
