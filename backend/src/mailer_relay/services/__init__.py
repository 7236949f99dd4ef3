"""Parsing, re-encoding and forwarding of form submissions."""
