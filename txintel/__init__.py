"""Transaction intelligence pipeline: categorization, recurring matching and transfer linking."""

__version__ = "0.1.0"
