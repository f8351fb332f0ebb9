"""
familyvault - Metadata store for a family photo and video gallery

Keeps media records in year shards with an index of populated years and
answers gallery queries per user:
- Year-sharded document storage on DuckDB or Google Cloud Storage
- Retries for transient storage failures
- Role and custom-rule based access control, search and analytics
- Content hash duplicate detection
"""

__version__ = "0.1.0"
__author__ = "familyvault"
__description__ = "Metadata store for a family photo and video gallery"
