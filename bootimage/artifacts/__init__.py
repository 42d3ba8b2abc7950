"""Artifact fetching and caching.

This module handles:
- Downloading artifacts over HTTP(S) and copying local ones
- Checksum verification and tar member extraction
- The on-disk artifact cache
"""
