"""Utility functions for the deal registration kernel."""

from dealreg_kernel.utils.hashing import canonicalize_json, hash_payload

__all__ = ["canonicalize_json", "hash_payload"]
