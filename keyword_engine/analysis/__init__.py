"""Keyword analysis engine.

Pure, deterministic building blocks used by the discovery scheduler:
  1. Candidate Generator (metadata, semantic variations, category trending)
  2. Ranking Calculator (position, trend, visibility, traffic)
  3. Volume Estimator (popularity score and competition tier)
  4. Competitor Gap Analyzer
  5. Semantic Clustering Engine

Input:  app metadata and SERP result sets
Output: candidates, ranking snapshots, volume estimates, gap reports, clusters
"""
