"""
Scan Services

Organized by responsibility:

1. discovery/ - URL enumeration
   - sitemap_discovery.py: sitemap_index.xml / sitemap.xml traversal, typed candidates
   - crawl_fallback.py: bounded same-site crawl when sitemaps are missing
   - url_classifier.py: normalisation, host filters, blog/page typing

2. extraction/ - Page content
   - content_fetcher.py: headless render first, plain GET fallback
   - content_extractor.py: main-content extraction and metadata
   - html_sanitizer.py: editor-safe HTML

3. plagiarism/ - LLM originality estimate and per-scan budget

4. drafts/ - CMS draft providers (WordPress, Shopify, Webflow)

5. store/ - In-process scan records and opportunity snapshots

6. orchestration/ - Background scan coordination
   - scan_orchestrator.py: published-site scans with dedupe and deadlines
   - draft_scan.py: single-draft scans
"""
