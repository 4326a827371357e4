"""
jobs/ - Long-running CLI entrypoints.
"""
