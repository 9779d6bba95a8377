"""
judgeindex - judicial records ingestion and confidence-scored judge analytics.
"""

__version__ = "0.1.0"
