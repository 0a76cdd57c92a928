#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Lovable Chat Exporter - Capture a virtualized chat thread and export it

Opens the thread in a persistent Playwright browser profile, keeps every
message the chat renders while you browse (or scrolls the whole history into
view on request), and writes the transcript as Markdown, HTML or JSON.
Markdown can also be copied to the clipboard if configured.
"""

import sys
import json
import os
import time
import tempfile
import asyncio
import datetime as dt
import argparse
from pathlib import Path

import pyperclip
from playwright.async_api import async_playwright, Error as PlaywrightError

from lovable_exporter.config import get_config_paths, load_config, resolve_path, write_user_config
from lovable_exporter.browser import PlaywrightChatPage
from lovable_exporter.driver import Outcome
from lovable_exporter.log import log_debug, log_warn, set_debug
from lovable_exporter.parser import FragmentSelectors
from lovable_exporter.render import EXPORT_FORMATS, export_filename, normalize_format, render
from lovable_exporter.session import ExportSession
from lovable_exporter.storage import JsonFileStorage
from lovable_exporter.store import MessageStore, is_chat_page, thread_key

# --- Global State ---
args = None

# --- Lock ---
_LOCK_DIR = Path(tempfile.gettempdir()) / "lovable_exporter"
_LOCK_FILE = _LOCK_DIR / "lovable_exporter.lock"
_LOCK_MAX_AGE = 300  # seconds before a lock file is considered stale (crash recovery)

WATCH_COMMANDS = ("capture", "md", "html", "json", "clear", "count", "quit")


def acquire_lock() -> bool:
    """Try to acquire a process lock. Returns True if acquired, False if another instance drives the profile."""
    _LOCK_DIR.mkdir(parents=True, exist_ok=True)
    if _LOCK_FILE.exists():
        age = time.time() - _LOCK_FILE.stat().st_mtime
        if age < _LOCK_MAX_AGE:
            return False  # Active lock held by another instance
        _LOCK_FILE.unlink(missing_ok=True)  # Stale lock (e.g. previous crash)
    _LOCK_FILE.write_text(str(os.getpid()), encoding="utf-8")
    return True


def release_lock():
    _LOCK_FILE.unlink(missing_ok=True)


# --- Configuration ---

def interactive_setup(paths):
    """Run an interactive CLI setup to create the initial config.yaml."""
    print("\n=== Lovable Chat Exporter: First Time Setup ===")

    default_out = "outputs/chat_exports"
    user_out = input(f"Enter output directory (default: {default_out}): ").strip()
    if not user_out:
        user_out = default_out

    user_clip = input("Copy Markdown exports to the clipboard? (y/n) [n]: ").strip().lower()
    user_headless = input("Run the browser headless? (y/n) [n]: ").strip().lower()

    new_config = {
        "output": {"dir": user_out},
        "clip": {"enabled": user_clip == "y"},
        "browser": {"headless": user_headless == "y"},
    }

    try:
        target_path = write_user_config(new_config, paths)
        print(f"\nSaved configuration to: {target_path}")
    except OSError as e:
        print(f"Failed to save configuration: {e}")
    return new_config


def build_storage(config) -> JsonFileStorage:
    return JsonFileStorage(resolve_path(config["storage"]["dir"]))


def copy_to_clipboard(config, content: str):
    if not config.get("clip", {}).get("enabled"):
        return
    try:
        pyperclip.copy(content)
        print("Markdown result has been copied to clipboard.")
    except pyperclip.PyperclipException as e:
        print(f"Error copying to clipboard: {e}")


async def deliver(session: ExportSession, config, formats):
    if not config["output"]["enabled"]:
        if "md" in formats:
            copy_to_clipboard(config, session.render("md"))
        return
    for fmt in formats:
        path = await session.export(fmt)
        media_type = EXPORT_FORMATS[fmt]["media_type"]
        print(f"Saved {media_type} to: {path}")
        if fmt == "md":
            copy_to_clipboard(config, path.read_text(encoding="utf-8"))


# --- Browser commands ---

async def open_session(p, config, url):
    browser_cfg = config["browser"]
    context = await p.chromium.launch_persistent_context(
        resolve_path(browser_cfg["user_data_dir"]),
        headless=bool(browser_cfg.get("headless")),
    )
    page = context.pages[0] if context.pages else await context.new_page()
    if args.debug:
        page.on("console", lambda msg: log_debug(f"BROWSER CONSOLE: {msg.text}"))

    await page.goto(url or browser_cfg["start_url"])
    chat_page = PlaywrightChatPage(
        page,
        scroll_hints=config["selectors"].get("scroll_hints") or (),
        scroll_margin=float(config["capture"].get("scroll_margin", 50)),
    )
    session = ExportSession.from_config(
        chat_page,
        build_storage(config),
        config,
        selectors=FragmentSelectors.from_config(config["selectors"]),
    )
    session.output_dir = resolve_path(config["output"]["dir"])
    await session.start()
    return context, session


async def run_capture(p, config, url, formats) -> int:
    context, session = await open_session(p, config, url)
    try:
        if not session.active:
            log_warn(f"Not a Lovable chat page: {session.page.url}")
            return 2
        print(f"Capturing {session.page.url} ({session.count} messages stored)")
        result = await session.capture_history()
        if result.outcome is Outcome.NO_CONTAINER:
            print(result.message, file=sys.stderr)
            return 3
        print(f"{result.message} ({result.iterations} scroll passes)")
        await deliver(session, config, formats)
        return 0
    finally:
        await session.close()
        await context.close()


async def read_command() -> str:
    line = await asyncio.to_thread(sys.stdin.readline)
    return line.strip().lower() if line else "quit"


async def run_watch(p, config, url) -> int:
    context, session = await open_session(p, config, url)
    print("Watching. Scroll the chat or type a command: " + ", ".join(WATCH_COMMANDS))
    try:
        while True:
            command = await read_command()
            await session.settle()
            if command == "quit":
                break
            if command == "count":
                print(f"{session.count} messages captured")
            elif command == "capture":
                result = await session.capture_history()
                print(result.message)
            elif command in EXPORT_FORMATS:
                await deliver(session, config, [command])
            elif command == "clear":
                await session.clear()
                print("Captured messages cleared.")
            elif command:
                print(f"Unknown command: {command}")
    except PlaywrightError as e:
        if "closed" not in str(e):
            raise
        print("\nBrowser was closed. Exiting.")
    finally:
        await session.close()
        await context.close()
    return 0


# --- Offline commands ---

async def run_clear(config, url) -> int:
    if not is_chat_page(url):
        log_warn(f"Not a Lovable chat page: {url}")
        return 2
    store = MessageStore(thread_key(url), build_storage(config))
    await store.clear()
    print(f"Cleared stored messages for {url}")
    return 0


def run_render(config, export_path: Path, formats) -> int:
    data = json.loads(export_path.read_text(encoding="utf-8"))
    store = MessageStore("offline")
    store.load_from(data.get("messages", []))
    url = data.get("url", "")
    now = dt.datetime.now().astimezone()
    out_dir = resolve_path(config["output"]["dir"])
    out_dir.mkdir(parents=True, exist_ok=True)
    for fmt in formats:
        path = out_dir / export_filename(config["output"]["export_name"], fmt, now)
        content = render(fmt, store.get_all(), url, now)
        path.write_text(content, encoding="utf-8")
        print(f"Saved {len(store)} messages to: {path}")
        if fmt == "md":
            copy_to_clipboard(config, content)
    return 0


def parse_formats(values):
    return [normalize_format(v) for v in (values or ["md"])]


def build_parser():
    parser = argparse.ArgumentParser(description="Capture and export Lovable chat threads.")
    parser.add_argument("--debug", action="store_true", help="Show debug information.")
    parser.add_argument("--setup", action="store_true", help="Run the first-time configuration setup.")
    parser.add_argument("--outdir", help="Directory to save exports in (overrides config).")
    parser.add_argument("--headless", action="store_true", help="Run the browser without a window.")
    sub = parser.add_subparsers(dest="command")

    capture = sub.add_parser("capture", help="Scroll the full history into view and export it.")
    capture.add_argument("url")
    capture.add_argument("-f", "--format", action="append", help="md, html or json (repeatable, default md).")

    watch = sub.add_parser("watch", help="Capture while you browse; commands on stdin.")
    watch.add_argument("url", nargs="?")

    clear = sub.add_parser("clear", help="Forget the stored messages of a thread.")
    clear.add_argument("url")

    render_cmd = sub.add_parser("render", help="Re-render a JSON export.")
    render_cmd.add_argument("file", type=Path)
    render_cmd.add_argument("-f", "--format", action="append", help="md, html or json (repeatable, default md).")
    return parser


async def async_main(config) -> int:
    if args.command == "clear":
        return await run_clear(config, args.url)

    # Lock: one process per browser profile
    if not acquire_lock():
        print("Another instance is already running. Exiting.")
        return 1
    try:
        async with async_playwright() as p:
            if args.command == "capture":
                return await run_capture(p, config, args.url, parse_formats(args.format))
            return await run_watch(p, config, args.url)
    finally:
        release_lock()


def main():
    global args
    parser = build_parser()
    args = parser.parse_args()
    set_debug(args.debug)

    # Fix Windows console encoding
    if sys.platform == "win32":
        try:
            sys.stdout.reconfigure(encoding='utf-8')
        except AttributeError:
            pass

    paths = get_config_paths()
    if args.setup:
        interactive_setup(paths)
        if not args.command:
            return 0

    override = {}
    if args.outdir:
        override["output"] = {"dir": args.outdir}
    if args.headless:
        override["browser"] = {"headless": True}
    config = load_config(paths, override)

    if not args.command:
        parser.print_help()
        return 0

    try:
        if args.command == "render":
            if not args.file.exists():
                print(f"Export file not found: {args.file}")
                return 1
            return run_render(config, args.file, parse_formats(args.format))
        return asyncio.run(async_main(config))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
