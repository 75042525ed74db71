"""
Data access package for the analysis agent.

Provides the query guard and DuckDB engine over the parquet tree, episode
detection for boolean regimens, record sampling and summaries, the live
state tree, the historical REST client, and the analysis history store.
"""
