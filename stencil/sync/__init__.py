"""Template synchronization: the clone and sync engine.

This package provides the primitives for:
- Enumeration: reading a repository's full file set at a ref
- Object building: blobs, trees, commits and refs on a target repository
- Cloning: populating a new repository, with a fallback strategy
- Drift detection: finding template changes since the last sync
- Sync: replaying the template onto a project via branch + PR or directly
"""
