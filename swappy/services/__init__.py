"""Catalog, derived-asset pipeline and the ingestion/query services built on them."""

from .catalog import Catalog
from .ingest_service import IngestService
from .pipeline import DerivedAssetPipeline
from .query_service import DerivedResult, QueryService

__all__ = ["Catalog", "DerivedAssetPipeline", "IngestService", "QueryService", "DerivedResult"]
