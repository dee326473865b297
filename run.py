#!/usr/bin/env python3
"""
Bitcoin Forecast
Main entry point for a single scheduled run
"""
import sys

from crypto_forecast.cli import main

if __name__ == "__main__":
    sys.exit(main())
