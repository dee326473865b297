"""
Analysis modules for the Bitcoin forecast pipeline
"""
