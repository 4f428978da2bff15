"""Exception types raised across the query pipeline.

Query-level failures (fetch, storage) abort a single query; enrichment failures
only drop the record they belong to.
"""


class ArxivExplorerError(RuntimeError):
    """Base class for all errors raised by arxiv_explorer."""


class ConfigError(ArxivExplorerError):
    """Raised when required configuration is missing or invalid."""


class QueryFileError(ArxivExplorerError):
    """Raised when the queries file cannot be read or validated."""


class FetchError(ArxivExplorerError):
    """Raised when the record source is unreachable or returns unparseable data."""


class StorageError(ArxivExplorerError):
    """Raised when a lookup or write against the paper store fails."""


class EnrichmentError(ArxivExplorerError):
    """Raised when the text-generation call fails or returns a malformed payload."""
