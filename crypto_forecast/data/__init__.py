"""
Data modules for the Bitcoin forecast pipeline
"""
