"""SQLAlchemy models for the keyword engine tables."""

from keyword_engine.models.competitor import CompetitorKeyword
from keyword_engine.models.discovery_job import DiscoveryJobRecord
from keyword_engine.models.keyword import Keyword
from keyword_engine.models.ranking import KeywordRanking
from keyword_engine.models.search_volume import KeywordSearchVolume

__all__ = [
    "CompetitorKeyword",
    "DiscoveryJobRecord",
    "Keyword",
    "KeywordRanking",
    "KeywordSearchVolume",
]
