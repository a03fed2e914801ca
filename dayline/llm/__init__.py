"""
LLM providers and the HTTP transport they share
"""
