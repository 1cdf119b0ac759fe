"""Repositories: one per aggregate, all built on ``BaseRepository``."""
