"""
Bitcoin Forecast
Fetches Bitcoin market data, computes technical indicators and asks an LLM for a trading recommendation.
"""
__version__ = '1.0.0'
