"""Course chat: retrieval-augmented answers from uploaded course documents."""

__version__ = "0.1.0"
