"""Command line entry point: run the server or try the parser and matcher offline."""

from __future__ import annotations

import argparse
import json

from .catalog_loader import CatalogLoader
from .config import load_settings
from .matcher import search_products
from .nlu import parse_user_utterance


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(prog="vocalshop", description="VocalShop voice assistant")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on source changes")

    parse = commands.add_parser("parse", help="Print the parsed slots of an utterance")
    parse.add_argument("utterance")

    search = commands.add_parser("search", help="Search the local catalog with an utterance")
    search.add_argument("utterance")

    args = parser.parse_args()
    settings = load_settings()

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "vocalshop.app:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=settings.log_level.lower(),
        )
        return

    parsed = parse_user_utterance(args.utterance, around_delta=settings.policy.around_delta)
    if args.command == "parse":
        print(json.dumps(parsed.to_dict(), ensure_ascii=False, indent=2))
        return

    products, _meta = CatalogLoader(settings.catalog_path).load()
    outcome = search_products(products, parsed, settings.policy)
    for line in outcome.trace:
        print(line)
    for product in outcome.results:
        print(f"- {product.id}: {product.title}")
    if outcome.suggestions:
        print("Suggestions:")
        for product in outcome.suggestions:
            print(f"- {product.id}: {product.title}")


if __name__ == "__main__":
    main()
