"""Cached, symmetrized evaluation of decay-chain amplitudes.

A decay tree is built from `.particle` and `.decay` nodes inside a `.model.Model`. Every
intermediate quantity of the tree is a `.cached.CachedValue` that is stored per event,
so that it is only recomputed if a parameter it depends on changed.
"""
