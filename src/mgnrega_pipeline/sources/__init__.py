"""
mgnrega_pipeline.sources — upstream record sources.

  DataGovSource — data.gov.in MGNREGA resource (paginated JSON)
"""

from mgnrega_pipeline.sources.base import BaseSource, SourceError
from mgnrega_pipeline.sources.datagov import DataGovSource

__all__ = ["BaseSource", "DataGovSource", "SourceError"]
