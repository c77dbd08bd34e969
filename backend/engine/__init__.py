"""
Map synchronization engine.

Wires viewport tracking, per-layer fetching, the render surface adapter and the feature
state reconciler behind the entry points a host (map page, chat command bridge) calls.
"""
