"""
Site Crawler

Bounded same-site crawling and content ingestion with a shared browser pool
and a two-tier render cache.
"""

__version__ = "1.0.0"
__description__ = "Site crawling and content ingestion engine"
