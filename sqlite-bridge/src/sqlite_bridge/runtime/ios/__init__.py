"""iOS Simulator runtime helpers.

The simulator's app sandboxes are plain host directories, so these modules
only need ``xcrun simctl`` and ``find``.
"""
