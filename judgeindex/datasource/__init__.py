"""
CourtListener data source.
"""

from judgeindex.datasource.base import BaseDataSource, Page
from judgeindex.datasource.courtlistener import (
    CourtListenerSource,
    build_courtlistener_source,
)

__all__ = ["BaseDataSource", "Page", "CourtListenerSource", "build_courtlistener_source"]
