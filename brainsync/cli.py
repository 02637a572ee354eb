#!/usr/bin/env python3
"""
brainsync  —  Encrypted multi-machine sync for conversation data
================================================================

Subcommands:
  init       Create the global config.yaml.
  setup      Join existing sync data (or create it) on this machine.
  sync       Run one full sync pass.
  push/pull  Push or pull a single conversation.
  status     Show local/remote conversations and the machine roster.
  resolve    Resolve a conflict (local / remote / both).
  conflicts  List or settle conflict copies.
  delete     Delete a conversation from the sync data.
  repair     Strip manifest entries whose remote objects are missing.
  watch      Sync every SYNC_INTERVAL seconds until interrupted.

The encryption password is read from $BRAINSYNC_PASSWORD, or prompted for.
Run 'brainsync <subcommand> --help' for more details.
"""
import argparse
import getpass
import os
import sys
import time
from pathlib import Path


# ── helpers ──────────────────────────────────────────────────────────────────

def _load_config(args):
    """Apply the selected profile of the config file to brainsync.config."""
    from brainsync import config as _cfg
    from brainsync.utils.logging import set_verbose

    set_verbose(getattr(args, "verbose", False))
    cfg_path = Path(args.config).expanduser() if getattr(args, "config", None) else None
    data = _cfg.load_config_file(cfg_path)
    profile = _cfg.get_profile(data, getattr(args, "profile", None) or "default")
    _cfg.apply_profile(profile)
    return profile


def _get_password(confirm: bool = False) -> str:
    from brainsync import config as _cfg

    password = os.environ.get(_cfg.PASSWORD_ENV)
    if password:
        return password
    if not sys.stdin.isatty():
        print(f"error: no password; set ${_cfg.PASSWORD_ENV} or run interactively.", file=sys.stderr)
        sys.exit(1)
    password = getpass.getpass("Encryption password: ")
    if confirm:
        again = getpass.getpass("Repeat password: ")
        if again != password:
            print("error: passwords do not match.", file=sys.stderr)
            sys.exit(1)
    if len(password) < 8:
        print("error: password must be at least 8 characters.", file=sys.stderr)
        sys.exit(1)
    return password


def _make_manager(args, confirm_password: bool = False):
    from brainsync.core.sync_engine import SyncManager

    _load_config(args)
    return SyncManager(_get_password(confirm_password))


def _fail(msg: str):
    print(f"error: {msg}", file=sys.stderr)
    sys.exit(1)


def _fmt_size(n: int) -> str:
    size = float(n)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{n} B"


def _print_result(result):
    print()
    print(f"{'─' * 64}")
    print(" SUMMARY")
    print(f"  Pushed     : {len(result.pushed)}")
    print(f"  Pulled     : {len(result.pulled)}")
    print(f"  In sync    : {len(result.skipped)}")
    print(f"  Conflicts  : {len(result.conflicts)}")
    print(f"  Errors     : {len(result.errors)}")
    print(f"{'─' * 64}")

    for err in result.errors:
        print(f"  ✗ {err}")
    if result.conflicts:
        print()
        print("⚠  CONFLICTS — changed on this machine and remotely:")
        for c in result.conflicts:
            print(f"   {c.conversation_id}  {c.local_title!r}  ({c.reason})")
        print("   Resolve with: brainsync resolve <id> {local,remote,both}")
    if result.missing:
        print()
        print("⚠  Some manifest entries reference missing remote files:")
        for conv_id in result.missing:
            print(f"   {conv_id}")
        print("   Run 'brainsync repair' to remove them from the manifest.")


# ── init ─────────────────────────────────────────────────────────────────────

def cmd_init(args):
    """Create the global config.yaml."""
    from brainsync import config as _cfg

    target = Path(args.config).expanduser() if args.config else _cfg.get_config_file()
    if target.exists() and not args.force:
        print(f"error: {target} already exists", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(1)

    def _yq(value: str) -> str:
        """Wrap a string in YAML single quotes, escaping embedded single quotes."""
        return "'" + value.replace("'", "''") + "'"

    storage_root = (args.storage_root or str(_cfg.STORAGE_ROOT)).replace("\\", "/")
    lines = [
        "# brainsync configuration",
        "#",
        "# defaults: applied to every profile.",
        "# profiles: named overrides; select one with --profile NAME.",
        "defaults:",
        f"  storage_root: {_yq(storage_root)}",
        f"  sync_interval: {_cfg.SYNC_INTERVAL}",
        f"  batch_size: {_cfg.BATCH_SIZE}",
        f"  file_concurrency: {_cfg.FILE_CONCURRENCY}",
        "profiles:",
        f"  - name: {args.profile or 'default'}",
        f"    backend: {args.backend}",
        f"    remote_root: {_yq(args.remote_root or str(_cfg.REMOTE_ROOT))}",
    ]
    if args.backend == "local":
        drive_root = (args.drive_root or str(_cfg.LOCAL_DRIVE_ROOT)).replace("\\", "/")
        lines.append(f"    drive_root: {_yq(drive_root)}")
    else:
        lines += [
            f"    server: {_yq(args.server or _cfg.SSH_HOST)}",
            f"    port: {args.port or _cfg.SSH_PORT}",
            f"    user: {_yq(args.user or _cfg.SSH_USER)}",
        ]
        if args.ssh_key:
            lines.append(f"    ssh_key: {_yq(args.ssh_key)}")
    if args.machine_name:
        lines.append(f"    machine_name: {_yq(args.machine_name)}")

    content = "\n".join(lines) + "\n"
    if args.dry_run:
        print(f"[dry-run] Would write {target}:")
        print(content)
        return

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    print(f"Created {target}")
    if args.verbose:
        print(content)


# ── setup ────────────────────────────────────────────────────────────────────

def cmd_setup(args):
    """Join or create the sync data and register this machine."""
    from brainsync.core.errors import DecryptionError

    manager = _make_manager(args, confirm_password=True)
    try:
        joined = manager.setup(args.machine_name)
    except DecryptionError as exc:
        _fail(str(exc))
    finally:
        manager.close()
    name = manager.state.machine_name
    if joined:
        print(f"Found existing sync data! Joined as '{name}'.")
    else:
        print(f"Sync data created. This machine is '{name}'.")
    print(f"Machine id: {manager.state.machine_id}")


# ── sync / push / pull ───────────────────────────────────────────────────────

def cmd_sync(args):
    """Run one full sync pass."""
    from brainsync import config as _cfg
    from brainsync.utils.context import SyncContext
    from brainsync.utils.logging import warn

    manager = _make_manager(args)
    if not manager.is_ready():
        _fail("this machine is not set up; run 'brainsync setup' first.")

    print(f"\n{'=' * 64}")
    print(f"  Sync  {_cfg.STORAGE_ROOT}")
    print(f"   ↔   {_cfg.BACKEND}:{_cfg.REMOTE_ROOT}")
    print(f"{'=' * 64}\n")

    ctx = SyncContext(progress=print if args.verbose else None)
    try:
        result = manager.sync_now(ctx)
    except KeyboardInterrupt:
        print()
        ctx.token.cancel()
        warn("Interrupted by user. The sync lock has been released.")
        sys.exit(130)
    finally:
        manager.close()

    _print_result(result)
    if not result.success:
        sys.exit(1)


def _single(args, push: bool):
    from brainsync.core.errors import SyncError

    manager = _make_manager(args)
    try:
        if push:
            stats = manager.push_conversation(args.id)
        else:
            stats = manager.pull_conversation(args.id)
    except SyncError as exc:
        _fail(str(exc))
    finally:
        manager.close()
    verb = "Pushed" if push else "Pulled"
    moved = stats.uploaded if push else stats.downloaded
    print(f"{verb} {args.id}: {moved} file(s) transferred, "
          f"{stats.skipped} already present, {stats.deleted} deleted.")


def cmd_push(args):
    """Push one conversation."""
    _single(args, push=True)


def cmd_pull(args):
    """Pull one conversation."""
    _single(args, push=False)


# ── status ───────────────────────────────────────────────────────────────────

def cmd_status(args):
    """Show local/remote conversations, machines and storage quota."""
    from brainsync import config as _cfg

    manager = _make_manager(args)
    if not manager.is_ready():
        _fail("this machine is not set up; run 'brainsync setup' first.")
    try:
        stats = manager.get_statistics()
    finally:
        manager.close()

    print(f"\nMachine : {stats.machine_name} ({stats.machine_id})")
    print(f"Local   : {_cfg.STORAGE_ROOT}")
    print(f"Remote  : {_cfg.BACKEND}:{_cfg.REMOTE_ROOT}")
    print(f"Last    : {stats.last_sync or 'never'}")
    print(f"Counts  : {stats.local_count} local, {stats.remote_count} remote")
    if stats.quota:
        used, limit = stats.quota
        print(f"Storage : {_fmt_size(used)} of {_fmt_size(limit)}")

    if stats.machines:
        print("\nMachines:")
        for m in stats.machines:
            current = "  (this machine)" if m.id == stats.machine_id else ""
            print(f"  {m.name:<24} last sync {m.last_sync or 'never':<26} "
                  f"↑{m.upload_count} ↓{m.download_count}{current}")

    pending = [c for c in stats.conversations if c.status != "synced"]
    shown = stats.conversations if args.verbose else pending
    if shown:
        print("\nConversations:")
        for c in shown:
            origin = f"  by {c.modified_by_name or c.modified_by}" if c.modified_by else ""
            print(f"  [{c.status:<11}] {c.id}  {c.title!r}  {_fmt_size(c.size)}{origin}")
    elif stats.conversations:
        print("\nEverything is in sync.")


# ── conflicts ────────────────────────────────────────────────────────────────

def cmd_resolve(args):
    """Resolve one conflict."""
    from brainsync.core.errors import SyncError

    manager = _make_manager(args)
    try:
        copy_id = manager.resolve_conflict(args.id, args.resolution)
    except (SyncError, ValueError) as exc:
        _fail(str(exc))
    finally:
        manager.close()
    if copy_id:
        print(f"Kept both: the remote version is now the local conversation {copy_id}.")
    else:
        print(f"Resolved {args.id} ({args.resolution}).")


def cmd_conflicts(args):
    """List conflict copies or settle one."""
    from brainsync.core.errors import SyncError

    manager = _make_manager(args)
    try:
        action = args.action or "list"
        if action == "list":
            copies = manager.list_conflict_copies()
            if not copies:
                print("No conflict copies.")
            for c in copies:
                print(f"  {c.copy_id}  (of {c.original_id}, {c.created_at})  {c.title!r}")
            return
        if not args.copy_id:
            _fail(f"'{action}' needs a conflict copy id.")
        if action == "keep-original":
            manager.keep_original(args.copy_id)
            print(f"Discarded {args.copy_id}.")
        else:
            manager.keep_conflict(args.copy_id)
            print(f"Replaced the original with {args.copy_id}.")
    except (SyncError, ValueError) as exc:
        _fail(str(exc))
    finally:
        manager.close()


# ── delete / repair ──────────────────────────────────────────────────────────

def cmd_delete(args):
    """Delete a conversation from the sync data (and optionally locally)."""
    from brainsync.core.errors import SyncError

    if not args.yes:
        where = "the sync data and this machine" if args.local else "the sync data"
        try:
            answer = input(f"Delete {args.id} from {where}? [y/N]: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            answer = "n"
        if answer not in ("y", "yes"):
            print("Nothing deleted.")
            return

    manager = _make_manager(args)
    try:
        found = manager.delete_conversation(args.id, local=args.local)
    except SyncError as exc:
        _fail(str(exc))
    finally:
        manager.close()
    print(f"Deleted {args.id}." if found else f"{args.id} was not in the manifest; remote files cleaned up.")


def cmd_repair(args):
    """Strip dangling manifest entries."""
    from brainsync.core.errors import SyncError

    manager = _make_manager(args)
    try:
        stripped = manager.repair_manifest()
    except SyncError as exc:
        _fail(str(exc))
    finally:
        manager.close()
    if stripped:
        print(f"Removed {len(stripped)} dangling entr{'y' if len(stripped) == 1 else 'ies'}: "
              + ", ".join(stripped))
    else:
        print("Manifest is consistent.")


# ── watch ────────────────────────────────────────────────────────────────────

def cmd_watch(args):
    """Sync every interval seconds until Ctrl-C."""
    from brainsync import config as _cfg
    from brainsync.core.auto_sync import AutoSyncTimer

    manager = _make_manager(args)
    if not manager.is_ready():
        _fail("this machine is not set up; run 'brainsync setup' first.")
    interval = args.interval or _cfg.SYNC_INTERVAL
    timer = AutoSyncTimer(manager, interval)
    try:
        timer.tick()
        timer.start()
        while timer.running:
            time.sleep(1)
    except KeyboardInterrupt:
        print()
    finally:
        timer.stop()
        manager.close()


# ── main ─────────────────────────────────────────────────────────────────────

def _common(p):
    p.add_argument("--profile", metavar="NAME", default="default",
                   help="Profile to use (default: default)")
    p.add_argument("--config", metavar="PATH",
                   help="Config file (default: the global config.yaml)")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Show every file, not just actions")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="brainsync",
        description="Encrypted multi-machine sync for conversation data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # ── init ──────────────────────────────────────────────────────────────────
    init_p = subparsers.add_parser("init", help="Create the global config.yaml")
    _common(init_p)
    init_p.add_argument("--backend", choices=("local", "sftp"), default="local",
                        help="Where the sync folder lives (default: local)")
    init_p.add_argument("--remote-root", metavar="PATH",
                        help="Sync folder, relative to --drive-root or absolute")
    init_p.add_argument("--drive-root", metavar="PATH",
                        help="Mounted cloud-drive folder (local backend)")
    init_p.add_argument("--storage-root", metavar="PATH",
                        help="Local conversation store (contains brain/ and conversations/)")
    init_p.add_argument("--server", metavar="HOST", help="SFTP server hostname or IP")
    init_p.add_argument("--port", type=int, metavar="N", help="SSH port (default: 22)")
    init_p.add_argument("--user", metavar="NAME", help="SSH username")
    init_p.add_argument("--ssh-key", metavar="PATH", help="SSH private key")
    init_p.add_argument("--machine-name", metavar="NAME", help="Name shown to other machines")
    init_p.add_argument("--force", action="store_true", help="Overwrite an existing config")
    init_p.add_argument("-n", "--dry-run", action="store_true",
                        help="Preview without writing files")

    # ── setup ─────────────────────────────────────────────────────────────────
    setup_p = subparsers.add_parser("setup", help="Join or create the sync data on this machine")
    _common(setup_p)
    setup_p.add_argument("--machine-name", metavar="NAME", help="Name shown to other machines")

    # ── sync ──────────────────────────────────────────────────────────────────
    sync_p = subparsers.add_parser("sync", help="Run one full sync pass")
    _common(sync_p)

    # ── push / pull ───────────────────────────────────────────────────────────
    push_p = subparsers.add_parser("push", help="Push one conversation")
    _common(push_p)
    push_p.add_argument("id", metavar="ID", help="Conversation id")
    pull_p = subparsers.add_parser("pull", help="Pull one conversation")
    _common(pull_p)
    pull_p.add_argument("id", metavar="ID", help="Conversation id")

    # ── status ────────────────────────────────────────────────────────────────
    status_p = subparsers.add_parser("status", help="Show sync status and machines")
    _common(status_p)

    # ── resolve ───────────────────────────────────────────────────────────────
    resolve_p = subparsers.add_parser("resolve", help="Resolve a sync conflict")
    _common(resolve_p)
    resolve_p.add_argument("id", metavar="ID", help="Conversation id")
    resolve_p.add_argument("resolution", choices=("local", "remote", "both"),
                           help="Keep the local copy, the remote copy, or both")

    # ── conflicts ─────────────────────────────────────────────────────────────
    conflicts_p = subparsers.add_parser("conflicts", help="List or settle conflict copies")
    _common(conflicts_p)
    conflicts_p.add_argument("action", nargs="?", choices=("list", "keep-original", "keep-conflict"),
                             default="list", help="What to do (default: list)")
    conflicts_p.add_argument("copy_id", nargs="?", metavar="COPY_ID",
                             help="Conflict copy id (<id>-conflict-<timestamp>)")

    # ── delete ────────────────────────────────────────────────────────────────
    delete_p = subparsers.add_parser("delete", help="Delete a conversation from the sync data")
    _common(delete_p)
    delete_p.add_argument("id", metavar="ID", help="Conversation id")
    delete_p.add_argument("--local", action="store_true", help="Also delete the local files")
    delete_p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    # ── repair ────────────────────────────────────────────────────────────────
    repair_p = subparsers.add_parser("repair", help="Strip dangling manifest entries")
    _common(repair_p)

    # ── watch ─────────────────────────────────────────────────────────────────
    watch_p = subparsers.add_parser("watch", help="Sync periodically until interrupted")
    _common(watch_p)
    watch_p.add_argument("--interval", type=int, metavar="SECONDS",
                         help="Seconds between passes (default: sync_interval from config)")

    return parser


COMMANDS = {
    "init": cmd_init,
    "setup": cmd_setup,
    "sync": cmd_sync,
    "push": cmd_push,
    "pull": cmd_pull,
    "status": cmd_status,
    "resolve": cmd_resolve,
    "conflicts": cmd_conflicts,
    "delete": cmd_delete,
    "repair": cmd_repair,
    "watch": cmd_watch,
}


def main(argv=None):
    """CLI entry point for brainsync"""
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)
    handler(args)


if __name__ == "__main__":
    main()
