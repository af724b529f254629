"""Core module - shared models, errors, settings, audit and observability.

Domain packages (similarity, dedup_config, dedup_engine, review_queue) build on
these pieces. Nothing in core depends on the domain packages.
"""

__version__ = "1.0.0"
