"""Ability-based authorization: decisions, caching and cleanup."""
