#!/usr/bin/env python3
"""bibstruct CLI - bibliographic structure recovery from the command line.

Usage:
    bibstruct process <pdf> [options]
    bibstruct spans <pdf>
    bibstruct garbled <pdf>
    bibstruct --version
    bibstruct --help

Commands:
    process     Run the full pipeline and store the results in SQLite
    spans       Print the in-text citation markers found in a PDF
    garbled     Print the per-page text quality table of a PDF

Examples:
    # Process a paper into ./bibstruct.db
    bibstruct process paper.pdf --id smith2024 --db ./bibstruct.db

    # Process with an arXiv id for the alternate-source fallback
    bibstruct process paper.pdf --arxiv-id 2401.01234 --force

    # Inspect citation markers
    bibstruct spans paper.pdf
"""

import argparse
import json
import logging
import sys
from pathlib import Path


def get_version():
    """Get package version."""
    from bibstruct import __version__
    return __version__


def _load_config(args):
    from bibstruct.config import Config

    config = Config.from_env()
    if getattr(args, "no_engine", False):
        config.structure_engine_enabled = False
    if getattr(args, "grobid_url", None):
        config.grobid_url = args.grobid_url
    if getattr(args, "ocr", False):
        config.ocr_enabled = True
    if getattr(args, "arxiv_id", None):
        config.alternate_source_enabled = True
    return config


def cmd_process(args):
    """Run the full pipeline on one PDF."""
    from bibstruct.pipeline import SQLiteStore, build_pipeline
    from bibstruct.utils.logging import setup_logging

    pdf_path = Path(args.pdf)
    if not pdf_path.exists():
        print(f"Error: PDF not found: {pdf_path}")
        return 1

    config = _load_config(args)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO, log_file=config.log_file)

    document_id = args.id or pdf_path.stem
    with SQLiteStore(args.db) as store:
        orchestrator = build_pipeline(config, store=store)
        status = orchestrator.process(
            document_id, str(pdf_path), known_id=args.arxiv_id, force=args.force
        )

        if args.json:
            print(json.dumps({
                "status": status.to_dict(),
                "references": [r.to_dict() for r in store.get_references(document_id)],
                "citation_spans": [s.to_dict() for s in store.get_citation_spans(document_id)],
                "links": [l.to_dict() for l in store.get_links(document_id)],
            }, indent=2))
            return 0 if status.outcome and status.outcome.value != "failed" else 1

        links = store.get_links(document_id)

    print("=" * 60)
    print("bibstruct Processing")
    print("=" * 60)
    print(f"  Document: {document_id}")
    print(f"  PDF: {status.pdf_path}")
    print(f"  Outcome: {status.outcome.value if status.outcome else '-'}")
    print(f"  Pages: {status.total_pages} "
          f"({status.extraction_method.value if status.extraction_method else '-'}, "
          f"quality {status.quality_score or 0:.2f})")
    provenance = status.reference_provenance.value if status.reference_provenance else "none"
    print(f"  References: {status.reference_count} ({provenance})")
    print(f"  Citation spans: {status.citation_span_count}")
    print(f"  Links: {len(links)}")
    if args.verbose:
        print("\nTiers:")
        for attempt in status.attempts:
            mark = "✓" if attempt.succeeded else "✗"
            print(f"  {mark} {attempt.tier:<18} {attempt.elapsed_ms:>8.0f}ms  {attempt.detail}")
    if status.error_message:
        print(f"\nError: {status.error_message}")
    print(f"\nStored in: {args.db}")
    print("=" * 60)
    return 0 if status.outcome and status.outcome.value != "failed" else 1


def cmd_spans(args):
    """Print citation spans detected in a PDF."""
    from bibstruct.citations import CitationSpanExtractor

    pdf_path = Path(args.pdf)
    if not pdf_path.exists():
        print(f"Error: PDF not found: {pdf_path}")
        return 1

    result = CitationSpanExtractor(args.scan_pages).extract(str(pdf_path), pdf_path.stem)
    if result.error:
        print(f"Error: {result.error}")
        return 1

    print(f"References start: page {result.references_start_page or '-'}")
    print(f"Spans: {len(result.spans)} ({result.annotation_count} annotation, "
          f"{result.pattern_count} pattern)\n")
    for span in result.spans:
        box = span.bbox
        dest = f" -> p{span.dest_page}" if span.dest_page else ""
        print(f"  p{span.page_num:<3} {span.raw_text:<30} {span.style.value:<12} "
              f"{span.provenance.value:<10} {span.confidence:.2f} "
              f"[{box.x1:.0f},{box.y1:.0f},{box.x2:.0f},{box.y2:.0f}]{dest}")
    return 0


def cmd_garbled(args):
    """Print the per-page quality table of a PDF."""
    from bibstruct.config import Config
    from bibstruct.extraction import PageExtractor
    from bibstruct.extraction.quality import control_ratio, is_garbled, letter_ratio, printable_ratio
    from bibstruct.exceptions import ExtractionFailure
    import fitz  # PyMuPDF

    pdf_path = Path(args.pdf)
    if not pdf_path.exists():
        print(f"Error: PDF not found: {pdf_path}")
        return 1

    extractor = PageExtractor(Config())
    print(f"{'page':>4}  {'chars':>6}  {'control':>7}  {'letters':>7}  {'printable':>9}  garbled")
    try:
        with fitz.open(str(pdf_path)) as doc:
            for page_num in range(1, doc.page_count + 1):
                text = extractor.extract_native(str(pdf_path), page_num, doc)
                print(f"{page_num:>4}  {len(text):>6}  {control_ratio(text):>7.3f}  "
                      f"{letter_ratio(text):>7.3f}  {printable_ratio(text):>9.3f}  "
                      f"{'yes' if is_garbled(text) else 'no'}")
    except (ExtractionFailure, RuntimeError) as e:
        print(f"Error: {e}")
        return 1
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="bibstruct",
        description="bibstruct - references, citation markers and links from academic PDFs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bibstruct process paper.pdf --id smith2024 --db ./bibstruct.db
  bibstruct spans paper.pdf
  bibstruct garbled paper.pdf
        """
    )
    parser.add_argument("--version", action="version", version=f"bibstruct {get_version()}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # process command
    process_parser = subparsers.add_parser(
        "process",
        help="Run the full pipeline on a PDF",
        description="Extract text, references and citation links and store them in SQLite."
    )
    process_parser.add_argument("pdf", help="Input PDF file")
    process_parser.add_argument("--id", help="Document id (default: PDF filename)")
    process_parser.add_argument("--arxiv-id", help="arXiv id used for the alternate-source fallback")
    process_parser.add_argument("--db", default="bibstruct.db", help="SQLite database (default: bibstruct.db)")
    process_parser.add_argument("--force", action="store_true", help="Re-process a completed document")
    process_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    process_parser.add_argument("--no-engine", action="store_true", help="Skip the GROBID structure engine")
    process_parser.add_argument("--grobid-url", help="GROBID server URL (or set BIBSTRUCT_GROBID_URL)")
    process_parser.add_argument("--ocr", action="store_true", help="Allow OCR for garbled pages")
    process_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    # spans command
    spans_parser = subparsers.add_parser(
        "spans",
        help="Print citation markers found in a PDF",
        description="Detect in-text citation markers from link annotations and text patterns."
    )
    spans_parser.add_argument("pdf", help="Input PDF file")
    spans_parser.add_argument("--scan-pages", type=int, default=15,
                              help="Trailing pages searched for the bibliography (default: 15)")

    # garbled command
    garbled_parser = subparsers.add_parser(
        "garbled",
        help="Print the per-page text quality table",
        description="Show control, letter and printable character ratios per page."
    )
    garbled_parser.add_argument("pdf", help="Input PDF file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    # Dispatch to command handler
    commands = {
        "process": cmd_process,
        "spans": cmd_spans,
        "garbled": cmd_garbled,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
