"""Link discovery: content-file extraction, sitemap parsing, classification."""

from linkaudit.scanner.classifier import LinkClassifier
from linkaudit.scanner.scanner import ScanResult, Scanner, ScannerConfig
from linkaudit.scanner.sitemap import SitemapExtractor

__all__ = ["LinkClassifier", "ScanResult", "Scanner", "ScannerConfig", "SitemapExtractor"]
