"""
Equipment Image Acquisition.

Oracle-guided image acquisition for equipment records: direct download with
a browser screenshot fallback, shared across equivalent records.
"""

__all__ = ['oracle', 'direct_fetch', 'browser', 'orchestrator', 'equivalence', 'bulk']
