"""Operator command-line tools for LoreKeeper.

- ``python -m lorekeeper.cli ingest`` ingests a file or URL for a tenant.
- ``python -m lorekeeper.cli delete`` soft-deletes a source and its vectors.
- ``python -m lorekeeper.cli sources`` lists a tenant's sources.
"""
