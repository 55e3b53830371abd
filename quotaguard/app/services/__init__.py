"""Services package for quotaguard.

This package provides:
- Fixed window rate limiting with pluggable counter stores
"""
