"""
Ingestion — chunking, embedding, and persisting knowledge documents.

This package turns a stored document into retrieval-sized chunks with
embedding vectors, replacing whatever chunks the document had before.
"""
