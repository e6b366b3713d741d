#!/usr/bin/env python3
"""
MindMend CLI. Every command has a short name and standard aliases:

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, dial     Start the MindMend API server
    ring            health, ping    Ping a running instance
    chat            talk            Chat with a running instance
    history         recent          Show a user's recent stored turns
    stats           info            Per-user conversation stats
    forget          wipe            Delete everything stored for a user
"""

import argparse
import sys

from mindmend import __version__

BANNER = r"""
    ┌──────────────────────────────────────────┐
    │   M I N D M E N D                        │
    │   A warm place to talk things through.   │
    └──────────────────────────────────────────┘
"""

DEFAULT_URL = "http://localhost:8000"


def _url(args) -> str:
    return (args.url or DEFAULT_URL).rstrip("/")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the MindMend API server."""
    import uvicorn
    from mindmend.config import get_config, is_secret_set
    from mindmend.storage.conversation_store import is_store_configured

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(BANNER)
    print(f"  Listening on {host}:{port}")
    print(f"  Model:  {cfg['generation']['model']}")
    print(f"  Memory: {'enabled' if is_store_configured(cfg) else 'disabled (stateless)'}")
    if not is_secret_set(cfg["inference"].get("api_key")):
        print("  ⚠ HF_API_KEY is not set, generation will fail")
    print()

    uvicorn.run(
        "mindmend.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_ring(args):
    """Ping a running MindMend instance."""
    import httpx

    url = _url(args)
    try:
        resp = httpx.get(f"{url}/api/health", timeout=5)
        if resp.status_code == 200:
            data = resp.json()
            print(f"  ☎  {url} is UP (v{data.get('version', '?')})")
            print(f"  🧠 Memory:    {'enabled' if data.get('memory') else 'disabled'}")
            print(f"  💛 Emotion:   {'enabled' if data.get('emotion') else 'disabled'}")
            print(f"  📡 Streaming: {data.get('streaming', '?')}")
        else:
            print(f"  ✗  No answer, got HTTP {resp.status_code}")
    except httpx.ConnectError:
        print(f"  ✗  Nothing listening at {url}")
    except Exception as e:
        print(f"  ✗  Error: {e}")


def _send_turn(client, url: str, user_id: str, name, history: list[dict]) -> str:
    """POST one turn with streaming on; print deltas as they arrive."""
    from mindmend.stream import ERROR, TEXT_DELTA, parse_frame

    body = {"messages": history, "userId": user_id, "userName": name, "stream": True}
    parts = []
    with client.stream("POST", f"{url}/api/chat", json=body) as resp:
        if resp.status_code != 200:
            resp.read()
            try:
                message = resp.json().get("error", resp.text)
            except ValueError:
                message = resp.text
            print(f"  ✗  {message}")
            return ""
        print("  ◀ ", end="", flush=True)
        for line in resp.iter_lines():
            if not line.strip():
                continue
            tag, payload = parse_frame(line)
            if tag == TEXT_DELTA:
                parts.append(payload.get("textDelta", ""))
                print(payload.get("textDelta", ""), end="", flush=True)
            elif tag == ERROR:
                print(f"\n  ✗  {payload.get('error')}")
                return ""
        print("\n")
    return "".join(parts)


def cmd_chat(args):
    """Interactive chat against a running instance."""
    import httpx
    from mindmend.names import extract_name, user_id_for, welcome_message

    url = _url(args)
    print(BANNER)
    print("  Type 'exit' or Ctrl-C to leave.\n")

    name = args.name
    if not name:
        print(f"  ◀ {welcome_message(None)}\n")
        try:
            intro = input("  you> ").strip()
        except EOFError:
            return
        name = extract_name(intro)
    user_id = args.user or user_id_for(name)
    if name:
        print(f"\n  ◀ {welcome_message(name)}\n")
    else:
        print("\n  ◀ That's okay, we can skip names. What's on your mind?\n")

    history: list[dict] = []
    with httpx.Client(timeout=args.timeout) as client:
        try:
            while True:
                try:
                    text = input("  you> ").strip()
                except EOFError:
                    break
                if not text:
                    continue
                if text.lower() in ("exit", "quit", "q", "bye"):
                    print("  Take care.")
                    break
                history.append({"role": "user", "content": text})
                try:
                    reply = _send_turn(client, url, user_id, name, history)
                except httpx.HTTPError as e:
                    print(f"  ✗  Connection problem: {e}")
                    reply = ""
                if reply:
                    history.append({"role": "assistant", "content": reply})
                else:
                    history.pop()
        except KeyboardInterrupt:
            print("\n  Take care.")


def cmd_history(args):
    """Show a user's most recent stored turns."""
    import httpx

    resp = httpx.get(
        f"{_url(args)}/api/conversations/{args.user_id}",
        params={"limit": args.limit},
        timeout=15,
    )
    data = resp.json()
    if resp.status_code != 200:
        print(f"  ✗  {data.get('error', resp.status_code)}")
        return
    messages = data.get("messages", [])
    if not messages:
        print("  Nothing stored yet.")
        return
    for msg in messages:
        role = msg.get("role", "?")
        role_color = "\033[96m" if role == "user" else "\033[93m"
        reset = "\033[0m"
        content = msg.get("content", "")
        if len(content) > 200:
            content = content[:200] + "..."
        emotion = msg.get("emotion") or {}
        mood = f" ({emotion.get('label')})" if role == "user" and emotion.get("label") else ""
        print(f"  {role_color}{role.upper():<9}{reset}{mood} {content}")


def cmd_stats(args):
    """Per-user conversation stats."""
    import httpx

    resp = httpx.get(f"{_url(args)}/api/conversations/{args.user_id}/stats", timeout=15)
    data = resp.json()
    if resp.status_code != 200:
        print(f"  ✗  {data.get('error', resp.status_code)}")
        return

    print(f"  User: {args.user_id}")
    print(f"  ├─ Messages:  {data.get('total_messages', 0)}")
    print(f"  ├─ User:      {data.get('user_messages', 0)}")
    print(f"  ├─ Assistant: {data.get('assistant_messages', 0)}")
    print(f"  ├─ First:     {data.get('first_message_at') or '-'}")
    print(f"  └─ Last:      {data.get('last_message_at') or '-'}")
    emotions = data.get("emotions", {})
    if emotions:
        print()
        print("  Emotions")
        items = sorted(emotions.items(), key=lambda x: x[1], reverse=True)
        for i, (label, count) in enumerate(items):
            prefix = "└─" if i == len(items) - 1 else "├─"
            print(f"  {prefix} {label}: {count}")


def cmd_forget(args):
    """Delete everything stored for a user."""
    import httpx

    if not args.yes:
        answer = input(f"  Delete all stored conversations for {args.user_id}? [y/N] ").strip()
        if answer.lower() not in ("y", "yes"):
            print("  Cancelled.")
            return
    resp = httpx.delete(f"{_url(args)}/api/conversations/{args.user_id}", timeout=30)
    data = resp.json()
    if resp.status_code != 200:
        print(f"  ✗  {data.get('error', resp.status_code)}")
        return
    print(f"  ✓  Deleted {data.get('deleted', 0)} records for {args.user_id}")


def cmd_banner(args):
    """Print the banner."""
    print(BANNER)


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def _add_url(p):
    p.add_argument("--url", "-u", default=None, help=f"MindMend URL (default: {DEFAULT_URL})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mindmend",
        description="MindMend: a warm place to talk things through.",
        epilog="Run 'mindmend <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"mindmend {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "dial"],
                 "Start the MindMend API server", cmd_serve, setup_serve)

    _add_command(sub, ["ring", "health", "ping"],
                 "Ping a running MindMend instance", cmd_ring, _add_url)

    def setup_chat(p):
        _add_url(p)
        p.add_argument("--name", "-n", default=None, help="Skip the intro and use this name")
        p.add_argument("--user", default=None, help="Explicit userId (default: derived from name)")
        p.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds")

    _add_command(sub, ["chat", "talk"],
                 "Chat with a running instance", cmd_chat, setup_chat)

    def setup_history(p):
        _add_url(p)
        p.add_argument("user_id", help="userId, e.g. user_sam")
        p.add_argument("--limit", "-l", type=int, default=20, help="Number of turns")

    _add_command(sub, ["history", "recent"],
                 "Show a user's recent stored turns", cmd_history, setup_history)

    def setup_stats(p):
        _add_url(p)
        p.add_argument("user_id", help="userId, e.g. user_sam")

    _add_command(sub, ["stats", "info"],
                 "Per-user conversation stats", cmd_stats, setup_stats)

    def setup_forget(p):
        _add_url(p)
        p.add_argument("user_id", help="userId, e.g. user_sam")
        p.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    _add_command(sub, ["forget", "wipe"],
                 "Delete everything stored for a user", cmd_forget, setup_forget)

    _add_command(sub, ["banner"], "Print the MindMend banner", cmd_banner)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        cmd_banner(args)
        parser.print_help()
        return 0

    args.func(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
