"""
Command Line Package

Entry point of the ``mdns-discovery`` tool.
"""
