"""
Configuration loading and bundled prompt templates
"""
