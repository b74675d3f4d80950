"""contextsmith: token-budgeted context bundles for LLMs."""

__version__ = "0.3.0"
