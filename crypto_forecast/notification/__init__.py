"""
Notification modules for the Bitcoin forecast pipeline
"""
