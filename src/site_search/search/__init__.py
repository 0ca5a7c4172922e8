"""
Search indexing and query engine package.

This package provides a pure-Python site search stack:
- analyzers, stemmers, markup: Tokenization, stemming and markup stripping
- storage, sqlite_storage: Storage contract and bundled backends
- indexer: Document indexing
- finder, results: Query execution, relevance scoring and ranked results
- snippet: Highlighted snippets from external content
"""
