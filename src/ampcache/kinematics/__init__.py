"""Kinematic quantities that the amplitude depends on, cached per event.

The accessors in this package are owned by the `.Model`. They are ordinary dependencies
of the cached values in the decay tree, but do not depend on any fit parameter, so they
are computed only once per event.
"""
