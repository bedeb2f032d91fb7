#!/usr/bin/env python3
import argparse
import logging
import sys
from pathlib import Path

from textbook_retrieval.app import ingest_path, load_config, query_text
from textbook_retrieval.logging_utils import setup_logging
from textbook_retrieval.utils.output import FORMATS, write_output

logger = logging.getLogger(__name__)


def _parse_pages(s: str):
    lo, hi = [int(x) for x in s.split("-", 1)]
    return (lo, hi) if lo <= hi else (hi, lo)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="textbook-retrieval",
        description="Ingest OCR'd textbook pages and retrieve excerpts for student questions.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    # Global logging flags
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable DEBUG logs (to stderr).")
    parser.add_argument("--quiet", "-q", action="store_true", help="Reduce logs to WARN and above.")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines (stderr).")

    # -----------------------
    # ingest
    # -----------------------
    p_ing = sub.add_parser("ingest", help="Ingest a .json/.jsonl file of OCR records")
    p_ing.add_argument("path", type=str, help="OCR records file")
    p_ing.add_argument("--textbook-id", required=True)
    p_ing.add_argument("--config", type=str, default="config.yaml")

    # -----------------------
    # query
    # -----------------------
    p_q = sub.add_parser("query", help="Retrieve textbook excerpts for a question")
    p_q.add_argument("question", type=str)
    p_q.add_argument("--textbook-id", required=True)
    p_q.add_argument("--config", type=str, default="config.yaml")
    p_q.add_argument("--lesson", type=str, default=None, help="Lesson id to boost")
    p_q.add_argument("--page", type=int, default=None, help="Page the student is on")
    p_q.add_argument("--k", type=int, default=None, help="Override top-k (default 5)")
    p_q.add_argument("--pages", type=str, default="", help="Restrict to a page range like 16-20")
    p_q.add_argument("--max-tokens", type=int, default=None, help="Token budget for excerpts")
    p_q.add_argument("--boost-recent", action="store_true", help="Boost pages near --page")
    p_q.add_argument("--show-contexts", action="store_true", help="Print selected chunks")
    p_q.add_argument("--out", type=str, default=None, help="Write result to a file")
    p_q.add_argument("--format", type=str, default=None, choices=list(FORMATS))
    p_q.add_argument("--save", type=str, default=None, help="Directory to auto-save result")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose and args.quiet:
        print("Cannot use --verbose and --quiet together.", file=sys.stderr)
        sys.exit(2)
    if args.verbose:
        setup_logging(level="DEBUG", json_logs=args.log_json)
    elif args.quiet:
        setup_logging(level="WARNING", json_logs=args.log_json)
    else:
        setup_logging(level="INFO", json_logs=args.log_json)

    cfg = load_config(args.config) if Path(args.config).exists() else {}
    logger.debug("CLI args parsed: %s", vars(args))

    if args.cmd == "ingest":
        try:
            logger.info("Starting ingest: %s", Path(args.path).resolve())
            res = ingest_path(Path(args.path), cfg, args.textbook_id)
        except Exception as e:
            logger.exception("Ingest failed: %s", e)
            sys.exit(2)
        print(f"Ingest complete. Units: {len(res.toc.units)}  Chunks: {len(res.chunks)}")
        return

    page_range = None
    if args.pages:
        try:
            page_range = _parse_pages(args.pages)
        except ValueError:
            print("Invalid --pages format; expected something like 16-20", file=sys.stderr)
            sys.exit(2)

    try:
        ans = query_text(
            args.question,
            cfg,
            args.textbook_id,
            lesson_id=args.lesson,
            current_page=args.page,
            top_k=args.k,
            page_range=page_range,
            max_tokens=args.max_tokens,
            boost_recent_pages=True if args.boost_recent else None,
        )
    except Exception as e:
        logger.exception("Query failed: %s", e)
        sys.exit(2)

    if args.out or args.save:
        target = write_output(args.question, ans, out_path=args.out, fmt=args.format, save_dir=args.save)
        if not args.quiet:
            print(f"[saved] {target}")

    if args.quiet:
        return

    print("\n=== EXCERPTS ===")
    print(ans["answer"])
    if not ans["sufficient"]:
        print("\n(not enough relevant textbook content)")

    print("\n=== CITATIONS ===")
    for c in ans["citations"]:
        print(f"- {c['chunk_id']} | Page {c['page_number']} | {c['relevance_score']:.2f}")

    print("\n=== TRACE ===")
    print(ans["summary"])
    print(f"timers_ms: {ans['trace']['timers_ms']}")

    if args.show_contexts:
        print("\n=== CONTEXTS ===")
        for i, ctx in enumerate(ans["contexts"], start=1):
            print(f"[{i}] Page {ctx['page']} | {ctx['id']} | score {ctx['score']:.3f}")
            print(ctx["text"])
            print("---")


if __name__ == "__main__":
    main()
