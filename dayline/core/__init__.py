"""
Core infrastructure shared by the pipeline
"""
