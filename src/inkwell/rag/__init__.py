"""Retrieval-augmented generation: providers, embedding gateway, retriever, prompts."""
