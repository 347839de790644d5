"""Video curation pipeline for the BJJ coach.

This package discovers candidate instructional videos on YouTube under a
daily quota budget, gates them through lexical checks and an LLM classifier,
persists accepted videos in the Knowledge Store and decides what to search
for next through gap analysis.
"""
