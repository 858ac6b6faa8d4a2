#!/usr/bin/env python3
"""
StarterKit -- project starter with username/password accounts built in.

Usage:
  python main.py new my-app
  python main.py new my-app --description "Internal portal" --author "Jane Doe"
  python main.py new my-app --dest ~/src --git
  python main.py sweep
  python main.py serve --port 5000

Commands:
  new    Copy this template into ./<name> (or --dest/<name>), rename the
         project, and write a .env with a fresh SECRET_KEY.
  sweep  Delete expired sessions once and report how many were removed.
  serve  Run the API with uvicorn.
"""

import argparse
import sys
from pathlib import Path

from core.scaffold import ScaffoldError, scaffold_project


def _cmd_new(args: argparse.Namespace) -> int:
    try:
        target = scaffold_project(
            args.name,
            Path(args.dest).expanduser(),
            description=args.description,
            author=args.author,
            init_git=args.git,
        )
    except ScaffoldError as e:
        print(f"  [!] {e}")
        return 1
    print(f"\n  Created project {args.name} at {target}")
    print("\n  Next steps:")
    print(f"    cd {target}")
    print('    pip install -e ".[test]"')
    print("    uvicorn api.main:app --reload")
    return 0


def _cmd_sweep(args: argparse.Namespace) -> int:
    from auth.sessions import SessionManager
    from core.config import get_settings

    settings = get_settings()
    sessions = SessionManager(
        settings.database_url,
        idle_ttl_seconds=settings.session_idle_seconds,
        absolute_ttl_seconds=settings.session_max_age_seconds,
    )
    try:
        removed = sessions.purge_expired()
    finally:
        sessions.close()
    print(f"  Removed {removed} expired session(s).")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="starterkit",
        description="StarterKit -- project starter with accounts, sessions and password reset.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    new = sub.add_parser("new", help="Create a new project from this template")
    new.add_argument("name", help="Project (and directory) name")
    new.add_argument("--description", default="", help="Project description")
    new.add_argument("--author", default="", help="Author name")
    new.add_argument("--dest", default=".", help="Parent directory for the new project (default: cwd)")
    new.add_argument("--git", action="store_true", help="Run git init in the new project")
    new.set_defaults(func=_cmd_new)

    sweep = sub.add_parser("sweep", help="Delete expired sessions")
    sweep.set_defaults(func=_cmd_sweep)

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
