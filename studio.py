"""Suno Studio — command-line entry point."""
import argparse
import asyncio
import logging
import sys

from sunoflow.config import DEV_MODE, VALID_MODELS, WEB_PORT
from sunoflow.lifecycle import GenerationManager
from sunoflow.models import FAILED, ExtendOptions, GenerationOptions
from sunoflow.suno import SunoClient
from sunoflow.errors import SunoError, format_error
from sunoflow.ui import (
    console,
    print_header,
    print_lyrics,
    print_result,
    print_tracks,
    progress_line,
)
from sunoflow.web.server import build_manager, create_app


async def _follow(manager: GenerationManager) -> int:
    """Show live progress until the generation settles. Returns an exit code."""
    snapshot = manager.snapshot()
    if snapshot.status != FAILED:
        queue = manager.state.subscribe("cli")
        try:
            with console.status(progress_line(snapshot), spinner="dots") as status:
                waiter = asyncio.create_task(manager.wait())
                while not waiter.done():
                    try:
                        await asyncio.wait_for(queue.get(), timeout=0.5)
                    except asyncio.TimeoutError:
                        continue
                    status.update(progress_line(manager.snapshot()))
                await waiter
        finally:
            manager.state.unsubscribe("cli")

    snapshot = manager.snapshot()
    print_result(snapshot)
    return 1 if snapshot.status == FAILED else 0


async def cmd_generate(args) -> int:
    manager = build_manager()
    options = GenerationOptions(
        model=args.model,
        make_instrumental=args.instrumental,
        tags=args.tags,
        title=args.title,
    )
    console.print(f"  [dim]Prompt:[/dim] {args.prompt}")
    try:
        await manager.submit_generation(args.prompt, options)
        return await _follow(manager)
    except (KeyboardInterrupt, asyncio.CancelledError):
        await manager.cancel()
        console.print("\n  [yellow]Cancelled.[/yellow]")
        return 130


async def cmd_extend(args) -> int:
    manager = build_manager()
    options = ExtendOptions(
        continue_at=args.continue_at,
        tags=args.tags,
        title=args.title,
        make_instrumental=args.instrumental,
    )
    try:
        await manager.extend_track(args.track_id, args.prompt, options)
        return await _follow(manager)
    except (KeyboardInterrupt, asyncio.CancelledError):
        await manager.cancel()
        console.print("\n  [yellow]Cancelled.[/yellow]")
        return 130


async def cmd_lyrics(args) -> int:
    manager = build_manager()
    with console.status("  [yellow]✦  Writing lyrics...[/yellow]", spinner="dots"):
        text = await manager.generate_lyrics_only(args.prompt)
    if text is None:
        console.print(f"  [red]✗  {manager.state.error}[/red]")
        return 1
    print_lyrics(text)
    return 0


async def cmd_track(args) -> int:
    manager = build_manager()
    track = await manager.get_track(args.track_id)
    if track is None:
        console.print(f"  [red]✗  {manager.state.error or 'Track not found.'}[/red]")
        return 1
    print_tracks([track], title="Track")
    if track.audio_url:
        console.print(f"  {track.audio_url}")
    return 0


async def cmd_cache(args) -> int:
    manager = build_manager()
    if args.clear:
        await manager.clear_cache()
        console.print("  [green]Cache cleared.[/green]")
        return 0
    tracks = await manager.refresh_cached_tracks()
    print_tracks(tracks, title=f"Cached tracks ({len(tracks)})")
    return 0


async def cmd_credits(args) -> int:
    client = SunoClient()
    try:
        data = await client.get_credits()
    except SunoError as e:
        console.print(f"  [red]{format_error('credits', raw=e.message)}[/red]")
        return 1
    for key, value in data.items():
        console.print(f"  [bold]{key}[/bold]: {value}")
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    console.print(f"  [cyan]Serving on http://{args.host}:{args.port}[/cyan]")
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="studio", description="Generate music with the Suno API.")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("generate", help="generate tracks from a prompt and wait for them")
    p.add_argument("prompt")
    p.add_argument("--tags")
    p.add_argument("--title")
    p.add_argument("--model", choices=VALID_MODELS, default=VALID_MODELS[0])
    p.add_argument("--instrumental", action="store_true")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("extend", help="continue an existing track")
    p.add_argument("track_id")
    p.add_argument("prompt")
    p.add_argument("--continue-at", type=float, help="offset in seconds")
    p.add_argument("--tags")
    p.add_argument("--title")
    p.add_argument("--instrumental", action="store_true")
    p.set_defaults(func=cmd_extend)

    p = sub.add_parser("lyrics", help="generate lyrics only")
    p.add_argument("prompt")
    p.set_defaults(func=cmd_lyrics)

    p = sub.add_parser("track", help="show one track (cache first)")
    p.add_argument("track_id")
    p.set_defaults(func=cmd_track)

    p = sub.add_parser("cache", help="list or clear cached tracks")
    p.add_argument("--clear", action="store_true")
    p.set_defaults(func=cmd_cache)

    p = sub.add_parser("credits", help="show remaining credits")
    p.set_defaults(func=cmd_credits)

    p = sub.add_parser("serve", help="run the JSON/WebSocket API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=WEB_PORT)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else (logging.INFO if DEV_MODE else logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    print_header()

    if args.func is cmd_serve:
        return cmd_serve(args)
    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        console.print("\n  [yellow]Interrupted.[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
