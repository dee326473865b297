"""
Pipeline driver for the Bitcoin forecast pipeline
"""
