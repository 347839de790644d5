"""Personalized ranking and feedback tracking.

This package scores curated videos per user from community feedback,
per-demographic success patterns, preferences and instructor credibility,
and records user outcomes back into the Knowledge Store.
"""
