"""Story Engine launcher. Serves the NDJSON story API or plays a story in the terminal."""

import argparse
import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "127.0.0.1")
PORT = os.getenv("PORT", "13013")


def serve(args: argparse.Namespace) -> int:
    env = os.environ.copy()
    if args.config:
        env["STORY_CONFIG"] = str(args.config.resolve())

    print(f"Starting story server on http://{HOST}:{PORT} ...")
    cmd = [sys.executable, "-m", "uvicorn", "story_engine.app:app", "--host", HOST, "--port", PORT]
    if args.reload:
        cmd.append("--reload")
    proc = subprocess.Popen(cmd, cwd=ROOT, env=env)
    try:
        return proc.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
        proc.terminate()
        return proc.wait()


def play(args: argparse.Namespace) -> int:
    from story_engine.cli import TerminalRenderer, play as play_story
    from story_engine.config import build_generator, build_history, load_settings
    from story_engine.engine import HttpTransport, LocalTransport, StorySession, TransportError

    settings = load_settings(args.config)
    logging.getLogger().setLevel(settings.log_level.upper())

    if args.url:
        transport = HttpTransport(args.url, timeout=settings.llm_timeout)
    else:
        transport = LocalTransport(build_generator(settings), settings.frame_policy())

    renderer = TerminalRenderer()
    session = StorySession(
        transport,
        build_history(settings),
        renderer,
        reveal_delay=settings.reveal_delay,
        fast_mode=args.fast or settings.fast_mode,
    )

    prompt = args.prompt or input("Enter your story beginning: ")
    try:
        asyncio.run(play_story(session, renderer, prompt))
    except TransportError as e:
        print(f"\nThe story stopped loading: {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, EOFError):
        print()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Streaming story engine")
    parser.add_argument("--config", type=Path, default=None,
                        help="JSON settings file (default: STORY_CONFIG or built-in defaults)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_p = sub.add_parser("serve", help="Run the NDJSON story API")
    serve_p.add_argument("--reload", action="store_true", help="Restart on code changes")
    serve_p.set_defaults(func=serve)

    play_p = sub.add_parser("play", help="Play a story in the terminal")
    play_p.add_argument("--prompt", default="", help="Opening text (asked for when omitted)")
    play_p.add_argument("--url", default="", help="Story server URL; plays locally when omitted")
    play_p.add_argument("--fast", action="store_true", help="Deliver each round in one frame")
    play_p.set_defaults(func=play)

    args = parser.parse_args()
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
