#!/usr/bin/env python3
"""
Command-line script to summarize one legal document with an LLM.

Fetches the document, summarizes it (rotating pooled keys, retrying transient
failures) and prints the Summary as JSON, or the error response.

Requires an API key for the configured provider (LLM_PROVIDER, default gemini)
or a key pool in LEGAL_SCANNER_API_KEYS.

Usage:
    python run_summarizer.py https://example.com/privacy
    python run_summarizer.py https://example.com/terms --type terms
    python run_summarizer.py https://example.com/terms --cache-dir .cache
    python run_summarizer.py https://example.com/terms --no-cache -v
"""

import argparse
import asyncio
import json
import logging
import sys

# Load .env file automatically
from dotenv import load_dotenv
load_dotenv()

from legal_scanner.config import Settings
from legal_scanner.schemas import DocumentType, Summary
from legal_scanner.service import LegalDocumentService
from legal_scanner.summarizer import risk_level
from legal_scanner.logger import setup_logger


async def run(args) -> dict:
    settings = Settings.from_env()
    if args.no_cache:
        settings = settings.model_copy(update={"cache_enabled": False})
    if args.cache_dir:
        settings = settings.model_copy(update={"cache_dir": args.cache_dir})

    service = LegalDocumentService(settings=settings)

    try:
        result = await service.summarize(args.url, args.type)
    finally:
        await service.aclose()

    if isinstance(result, Summary):
        level = risk_level(result.risk_score, settings.risk_threshold)
        source = "cache" if result.cached else "model"
        print(f"  ✓ {result.title} (risk: {level}, from {source})", file=sys.stderr)
        return result.model_dump(mode="json")

    print(f"  ✗ Error: {result['message']}", file=sys.stderr)
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Summarize a legal document (terms, privacy, cookies, eula) using an LLM"
    )
    parser.add_argument(
        "url",
        help="URL of the document to summarize"
    )
    parser.add_argument(
        "--type", "-t",
        choices=[document_type.value for document_type in DocumentType],
        default=DocumentType.TERMS.value,
        help="Document type (default: terms)"
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable caching entirely"
    )
    parser.add_argument(
        "--cache-dir",
        help="Directory for persistent cache files (default: LEGAL_SCANNER_CACHE_DIR, else in-memory)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logger(level=log_level)

    print(f"Summarizing: {args.url}", file=sys.stderr)
    output = asyncio.run(run(args))
    print(json.dumps(output, indent=2))

    if "error" in output:
        sys.exit(1)


if __name__ == "__main__":
    main()
