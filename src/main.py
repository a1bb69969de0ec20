"""Command-line entry point: generate one image, list models, or run the web UI.

Run as a module: `python -m src.main generate --prompt "a red fox"`
"""
import os
import sys
import getpass
import argparse
import logging
from typing import Callable, Optional

from dotenv import load_dotenv

from .catalog import get_catalog
from .flow import GenerationFlow
from .image_gen import GenerationRequest, ImageGenerator
from .rate_limit import DEFAULT_MAX_REQUESTS, DEFAULT_WINDOW_MS, RateLimiter
from .state_store import StateStore


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DECLINED = 2

_EXTENSIONS = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp"}


def _ask_yes_no(question: str) -> bool:
    return input(f"{question} [y/N] ").strip().lower() in ("y", "yes")


def _resolve_credential(variant: str) -> Optional[str]:
    token = os.getenv("HF_API_TOKEN")
    if token or variant == "hosted":
        return token
    return getpass.getpass("Hugging Face API key: ").strip() or None


def generate(
    prompt: str,
    model_id: Optional[str] = None,
    negative_prompt: str = "",
    output: Optional[str] = None,
    variant: Optional[str] = None,
    dry_run: bool = False,
    assume_yes: bool = False,
    persist: bool = True,
    credential: Optional[str] = None,
    ask: Callable[[str], bool] = _ask_yes_no,
) -> int:
    variant = (variant or os.getenv("APP_VARIANT") or "byok").lower()
    catalog = get_catalog(variant)
    model_id = model_id or catalog[0].id
    hosted = variant == "hosted"

    credential = credential or (None if dry_run else _resolve_credential(variant))
    if not credential and not dry_run:
        print("Error: no API key available. Set HF_API_TOKEN or enter one when prompted.")
        return EXIT_ERROR

    limiter = None
    if hosted:
        limiter = RateLimiter(
            StateStore(memory=not persist),
            max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", str(DEFAULT_MAX_REQUESTS))),
            window_ms=int(os.getenv("RATE_LIMIT_WINDOW_MS", str(DEFAULT_WINDOW_MS))),
        )

    flow = GenerationFlow(
        ImageGenerator(catalog=catalog, dry_run=dry_run),
        catalog=catalog,
        rate_limiter=limiter,
        confirm_nsfw=hosted,
    )

    try:
        gen_request = GenerationRequest(prompt, model_id, negative_prompt=negative_prompt)
    except ValueError as exc:
        print(f"Error: {exc}")
        return EXIT_ERROR

    print(f"Generating with {model_id}...")
    outcome = flow.submit(gen_request, credential or "")
    if outcome is None:
        model = flow.pending_model
        if assume_yes or ask(f"{model.display_name} may produce adult content. Continue?"):
            outcome = flow.confirm()
        else:
            flow.decline()
            print("Cancelled.")
            return EXIT_DECLINED

    if not outcome.ok:
        print(f"Error generating image: {outcome.error}")
        return EXIT_ERROR

    handle = outcome.handle
    if not output:
        output = f"generated_{handle.handle_id[:8]}{_EXTENSIONS.get(handle.content_type, '.img')}"
    with open(output, "wb") as f:
        f.write(handle.data)
    print(f"Saved image to {os.path.abspath(output)}")
    if limiter is not None:
        print(f"Requests left in this window: {limiter.remaining()}")
    return EXIT_OK


def list_models(variant: Optional[str] = None) -> int:
    for model in get_catalog(variant or os.getenv("APP_VARIANT")):
        flags = []
        if model.supports_negative_prompt:
            flags.append("negative-prompt")
        if model.nsfw:
            flags.append("nsfw")
        print(f"{model.id:45} {model.display_name}" + (f"  [{', '.join(flags)}]" if flags else ""))
    return EXIT_OK


def serve(host: str = "127.0.0.1", port: int = 5000, debug: bool = False) -> int:
    from .web import create_app

    create_app().run(host=host, port=port, debug=debug)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    is_dry_run = os.getenv("DRY_RUN", "false").lower() in ("1", "true", "yes")

    parser = argparse.ArgumentParser(prog="python -m src.main")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate a single image")
    gen.add_argument("--prompt", required=True, help="Image description")
    gen.add_argument("--negative-prompt", dest="negative_prompt", default="", help="What to exclude from the image")
    gen.add_argument("--model", dest="model_id", help="Model id (defaults to the first model of the variant)")
    gen.add_argument("--output", "-o", help="Where to write the image")
    gen.add_argument("--variant", choices=["byok", "hosted"], help="Model list / key handling to use")
    gen.add_argument("--yes", "-y", dest="assume_yes", action="store_true", help="Skip the NSFW confirmation")
    gen.add_argument("--dry-run", dest="dry_run", action="store_true", help="Run without making external API calls")
    gen.add_argument("--no-dry-run", dest="dry_run", action="store_false", help="Run with real API calls")
    gen.add_argument("--no-persist", dest="persist", action="store_false", help="Keep the request counter in memory")
    gen.set_defaults(dry_run=is_dry_run, persist=True)

    models = sub.add_parser("models", help="List available models")
    models.add_argument("--variant", choices=["byok", "hosted"])

    srv = sub.add_parser("serve", help="Run the web UI")
    srv.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    srv.add_argument("--port", type=int, default=int(os.getenv("PORT", "5000")))
    srv.add_argument("--debug", action="store_true")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if args.command == "generate":
        return generate(
            args.prompt,
            model_id=args.model_id,
            negative_prompt=args.negative_prompt,
            output=args.output,
            variant=args.variant,
            dry_run=args.dry_run,
            assume_yes=args.assume_yes,
            persist=args.persist,
        )
    if args.command == "models":
        return list_models(args.variant)
    return serve(args.host, args.port, debug=args.debug)


if __name__ == "__main__":
    # Get the absolute path to the .env file by going up one level from src
    dotenv_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env")
    load_dotenv(dotenv_path=dotenv_path)
    sys.exit(main())
