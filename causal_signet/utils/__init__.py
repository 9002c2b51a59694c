"""Shared I/O, statistics and plotting helpers."""
