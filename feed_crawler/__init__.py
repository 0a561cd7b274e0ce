"""
Feed crawler: RSS/Atom sources to analyzed, deduplicated articles.

The pipeline schedules due sources, parses their feeds, fetches full-text
content, classifies and scores each article, and posts it to an ingest sink.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
