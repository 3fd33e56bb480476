"""Link crawling pipeline.

Turns a bookmarked URL into stored metadata, readable content, a screenshot
and optionally a full-page archive.

Sub-modules:
- ``config``             — constants and tuning parameters
- ``browser_pool``       — ``BrowserContextPool`` over a remote Playwright browser
- ``adblock``            — request-level ad/tracker filter for pooled pages
- ``http_fetcher``       — httpx content-type probe, plain fetch and downloads
- ``playwright_fetcher`` — pooled page crawl (navigation, idle wait, screenshot)
- ``metadata``           — metadata rule chain
- ``content_extractor``  — readability/trafilatura reading view and text
- ``archiver``           — ``monolith`` full-page archives
- ``orchestrator``       — ``CrawlOrchestrator``, the per-job pipeline
"""
