"""
Scrape engine primitives: models, cancellation, worker pool and HTTP client.
"""
