"""
Shared Package

Configuration, models, exceptions, logging and metrics used across the engine.
"""
