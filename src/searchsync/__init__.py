"""searchsync — Mirror a content repository into pluggable search engines.

One canonical query and document model in front of OpenSearch,
MeiliSearch, Algolia and an in-process engine, with field mapping,
document resolution and zero-downtime rebuilds.
"""

__version__ = "0.1.0"
