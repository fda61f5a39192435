"""
Configuration and HTTP routes for the price scraper.
"""
