"""
Analysis stages and batch lifecycle
"""
