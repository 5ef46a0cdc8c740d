"""Tokenizer, embeddings, similarity index and retrieval engine."""
