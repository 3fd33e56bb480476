"""Enhanced scraping of social-platform posts.

Sub-modules:
- ``urls``        — X/Twitter URL recognition and canonicalisation
- ``models``      — ``NormalizedSocialPost`` and its parts
- ``normalizer``  — alias-driven normalization of raw actor items
- ``rendering``   — HTML rendering of normalized posts
- ``scraper``     — ``EnhancedSocialScraper`` (Apify actor client)
"""
