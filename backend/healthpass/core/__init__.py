"""Configuration, logging, errors and cryptographic primitives."""
