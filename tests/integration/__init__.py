"""
Integration tests for appmake.

These tests run whole goals against real application trees: discovery,
dependency records, incremental compilation, descriptor synthesis and
cleanup together.
"""
