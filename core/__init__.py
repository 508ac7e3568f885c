"""Core module - document ingestion models, errors, configuration, audit and observability.

Nothing in here talks to the extraction model. Registries, business records
and import history live in /entity_resolver/ and /importer/.
"""

__version__ = "1.0.0"
