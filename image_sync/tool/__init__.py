"""Command line tool for image-sync.

Note this is exposed for CLI documentation, not to be used as a library.
"""
