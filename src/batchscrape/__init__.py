"""
Batch scraping core.

Drains batches of URLs through a page extractor into scraped rows, with
bounded concurrency, pause/resume/cancel and retry with backoff.
"""
