#!/usr/bin/env python3
"""
channelkit — Command-line interface for the channel onboarding service.

Usage:
    channelkit status
    channelkit channels --platform line
    channelkit sync
    channelkit wizard whatsapp --set accessToken=EAAG... --advance
    channelkit wizard line --complete --name "Support LINE"
    channelkit test <channel_id>
"""
import argparse
import json
import os
import sys
from urllib.parse import urljoin

import requests


DEFAULT_BASE = os.environ.get("CHANNELKIT_URL", "http://localhost:8000")
API_PREFIX = os.environ.get("CHANNELKIT_API_PREFIX", "/api")


def _api(args, path: str) -> str:
    return urljoin(args.url, f"{API_PREFIX}{path}")


def _fail(resp) -> None:
    try:
        detail = resp.json().get("detail", resp.text[:200])
    except ValueError:
        detail = resp.text[:200]
    print(f"❌ Error {resp.status_code}: {detail}")
    sys.exit(1)


def _print_channel(c: dict) -> None:
    icon = "✅" if c.get("is_active") else "⚪"
    print(f"  {icon} {c['id'][:8]}  {c['platform']:10s}  {c['name']:24s}  {c.get('api_status', '?')}")


def cmd_status(args):
    """Check service health and channel counts."""
    try:
        resp = requests.get(urljoin(args.url, "/health"), timeout=10)
        data = resp.json()
    except requests.ConnectionError:
        print(f"❌ Cannot connect to {args.url}")
        sys.exit(1)

    print(f"Status: {'✅ OK' if data.get('status') == 'healthy' else '⚠️ ' + str(data.get('status'))}")
    print(f"Database: {data.get('database', '?')}")
    print(f"Backend: {data.get('backend', '?')}")
    stats = data.get("channels") or {}
    if stats:
        print(f"Channels: {stats.get('total_channels', 0)} ({stats.get('active_channels', 0)} active)")
        for platform, count in stats.get("by_platform", {}).items():
            if count:
                print(f"  {platform}: {count}")


def cmd_channels(args):
    """List channels."""
    params = {}
    if args.platform:
        params["platform"] = args.platform
    if args.active:
        params["is_active"] = "true"
    resp = requests.get(_api(args, "/channels"), params=params, timeout=10)
    if resp.status_code != 200:
        _fail(resp)
    channels = resp.json()
    if not channels:
        print("No channels.")
        return
    for c in channels:
        _print_channel(c)


def cmd_sync(args):
    """Pull channels from the backend and merge them in."""
    resp = requests.post(_api(args, "/channels/sync"), timeout=30)
    if resp.status_code != 200:
        _fail(resp)
    report = resp.json()
    if report.get("error"):
        print(f"⚠️ Sync failed: {report['error']}")
        sys.exit(1)
    print(
        f"✅ fetched={report['fetched']} inserted={len(report['inserted'])} "
        f"skipped={report['skipped']} malformed={report['malformed']}"
    )


def cmd_wizard(args):
    """Show wizard progress; optionally set fields, advance or complete."""
    platform = args.platform
    if args.set:
        values = {}
        for pair in args.set:
            if "=" not in pair:
                print(f"❌ Expected field=value, got {pair!r}")
                sys.exit(1)
            name, value = pair.split("=", 1)
            values[name.strip()] = value
        resp = requests.put(_api(args, f"/setup/{platform}/credentials"), json={"values": values}, timeout=10)
        if resp.status_code != 200:
            _fail(resp)

    if args.advance:
        resp = requests.post(_api(args, f"/setup/{platform}/wizard/advance"), json={}, timeout=30)
        if resp.status_code != 200:
            _fail(resp)
        result = resp.json()["result"]
        if not result["ok"]:
            print(f"⚠️ Step {result['step_index']} incomplete, missing: {', '.join(result['missing_fields'])}")
        elif result.get("webhook"):
            print(f"🔗 Webhook URL: {result['webhook']['url']}")

    if args.complete:
        resp = requests.post(
            _api(args, f"/setup/{platform}/complete"), json={"name": args.name}, timeout=30,
        )
        if resp.status_code != 200:
            _fail(resp)
        data = resp.json()
        print(f"✅ Setup complete ({'created' if data['created'] else 'updated'})")
        _print_channel(data["channel"])
        return

    resp = requests.get(_api(args, f"/setup/{platform}/wizard"), timeout=10)
    if resp.status_code != 200:
        _fail(resp)
    state = resp.json()
    print(f"{state['platform']} setup: {len(state['completed_steps'])}/{state['step_count']} steps")
    for step in state["steps"]:
        marker = "▶" if step["index"] == state["current_step"] else " "
        icon = "✅" if step["complete"] else "⬜"
        missing = f"  (missing: {', '.join(step['missing_fields'])})" if step["missing_fields"] else ""
        print(f" {marker}{icon} {step['index']}. {step['title']}{missing}")
    if args.verbose:
        print(json.dumps(state, indent=2, ensure_ascii=False))


def cmd_test(args):
    """Re-test a channel's credentials."""
    resp = requests.post(_api(args, f"/channels/{args.channel_id}/test"), json={}, timeout=30)
    if resp.status_code != 200:
        _fail(resp)
    data = resp.json()
    result = data["result"]
    icon = "✅" if result["connected"] else "❌"
    print(f"{icon} {result['api_status']} (verified by {result['verified_by']})")
    if result.get("fallback_reason"):
        print(f"   fallback: {result['fallback_reason']}")


def main():
    parser = argparse.ArgumentParser(
        prog="channelkit",
        description="ChannelKit CLI — onboard and check messaging channels",
    )
    parser.add_argument("--url", default=DEFAULT_BASE, help="Service base URL")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    sub = parser.add_subparsers(dest="command", help="Command")

    # status
    p_status = sub.add_parser("status", help="Check service health")
    p_status.set_defaults(func=cmd_status)

    # channels
    p_channels = sub.add_parser("channels", help="List channels")
    p_channels.add_argument("--platform", "-p", default=None, help="Filter by platform")
    p_channels.add_argument("--active", action="store_true", help="Only active channels")
    p_channels.set_defaults(func=cmd_channels)

    # sync
    p_sync = sub.add_parser("sync", help="Sync channels from the backend")
    p_sync.set_defaults(func=cmd_sync)

    # wizard
    p_wizard = sub.add_parser("wizard", help="Inspect or drive a platform's setup wizard")
    p_wizard.add_argument("platform", help="line | whatsapp | instagram | facebook")
    p_wizard.add_argument("--set", action="append", metavar="FIELD=VALUE", help="Set a credential field")
    p_wizard.add_argument("--advance", action="store_true", help="Advance past the current step")
    p_wizard.add_argument("--complete", action="store_true", help="Finish setup and create the channel")
    p_wizard.add_argument("--name", default=None, help="Channel name for --complete")
    p_wizard.set_defaults(func=cmd_wizard)

    # test
    p_test = sub.add_parser("test", help="Test a channel connection")
    p_test.add_argument("channel_id", help="Channel ID")
    p_test.set_defaults(func=cmd_test)

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
