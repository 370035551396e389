#!/usr/bin/env python3
"""
Command-line script to detect legal-document links in HTML files.

Runs one scan per file (including the footer/bottom-of-page sweep) and prints
the detected links as JSON.  No API key is needed.

Usage:
    python run_scanner.py page.html
    python run_scanner.py page1.html page2.html --url https://example.com/
    python run_scanner.py page.html --threshold 0.2 -o links.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Load .env file automatically
from dotenv import load_dotenv
load_dotenv()

from legal_scanner.page import Page
from legal_scanner.classifier import LinkClassifier, DEFAULT_THRESHOLD
from legal_scanner.scanner import LinkScanner
from legal_scanner.logger import setup_logger


async def scan_file(file_path: Path, url: str, classifier: LinkClassifier) -> list:
    page = Page.from_file(file_path, url=url)
    scanner = LinkScanner(page, classifier=classifier, followup_delay=None)
    scanner.init()
    links = scanner.get_detected_links()
    scanner.destroy()
    return links


async def run(args) -> list:
    classifier = LinkClassifier(threshold=args.threshold)
    results = []

    for file_path in args.files:
        file_path = Path(file_path)
        print(f"Scanning: {file_path.name}", file=sys.stderr)

        try:
            links = await scan_file(file_path, args.url or "", classifier)

            results.append({
                "file": str(file_path),
                "status": "success",
                "links": [link.model_dump(mode="json") for link in links]
            })

            for link in links:
                print(
                    f"  ✓ [{link.document_type.value}] {link.display_text!r} "
                    f"-> {link.url} ({link.confidence_score:.2f})",
                    file=sys.stderr
                )
            if not links:
                print("  - No legal links found", file=sys.stderr)

        except OSError as e:
            results.append({
                "file": str(file_path),
                "status": "error",
                "error": str(e)
            })
            print(f"  ✗ Error: {e}", file=sys.stderr)

    return results


def main():
    parser = argparse.ArgumentParser(
        description="Detect links to terms, privacy, cookie and license documents in HTML files"
    )
    parser.add_argument(
        "files",
        nargs="+",
        help="HTML files to scan"
    )
    parser.add_argument(
        "--url", "-u",
        help="Page URL used to resolve relative links (default: the file's own URI)"
    )
    parser.add_argument(
        "--threshold", "-t",
        type=float,
        default=DEFAULT_THRESHOLD,
        help=f"Minimum classifier score (default: {DEFAULT_THRESHOLD})"
    )
    parser.add_argument(
        "--output", "-o",
        help="Output file for detected links (default: print to stdout)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging"
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.WARNING
    setup_logger(level=log_level)

    results = asyncio.run(run(args))

    output_json = json.dumps(results, indent=2)

    if args.output:
        Path(args.output).write_text(output_json)
        print(f"\nLinks saved to: {args.output}", file=sys.stderr)
    else:
        print(output_json)


if __name__ == "__main__":
    main()
