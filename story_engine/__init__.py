"""Streaming story engine for markup-driven interactive fiction."""
