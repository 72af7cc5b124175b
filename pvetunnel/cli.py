#!/usr/bin/env python3
"""
pvetunnel  -  SSH tunnel + live VM migration driver for Proxmox VE
==================================================================

Subcommands:
  init      Create a .pvetunnel config file in the current directory.
  migrate   Open the tunnel, launch the migration and watch it finish.
  tunnel    Open the tunnel only and keep it until Enter / Ctrl+C.
  status    Query the VM status on the source node once.

Run 'pvetunnel <subcommand> --help' for more details.
"""
import argparse
import sys
import threading
from pathlib import Path

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TIMED_OUT = 2
EXIT_INTERRUPTED = 130


# ── shared helpers ───────────────────────────────────────────────────────────

def _load_config(args):
    """Apply global config, then the nearest .pvetunnel, then CLI flags."""
    import pvetunnel.config as _cfg

    profile_name = getattr(args, "profile", None) or "default"
    global_cfg = _cfg.load_global_config()
    if global_cfg:
        _cfg.apply_profile(_cfg.get_profile(global_cfg, profile_name))

    project_file = _cfg.find_project_file()
    if project_file is not None:
        if args.verbose:
            print(f"[config] Using {project_file}")
        _cfg.apply_profile(_cfg.get_profile(_cfg.load_config_file(project_file), profile_name))

    overrides = {
        "source": args.source,
        "destination": getattr(args, "destination", None),
        "user": args.username,
        "ssh_key": args.keyfile,
        "ssh_password": args.password,
        "local_port": getattr(args, "local_port", None),
        "remote_port": args.remote_port,
        "token_name": getattr(args, "token_name", None),
        "token_value": getattr(args, "token_value", None),
        "poll_interval": getattr(args, "poll_interval", None),
        "max_attempts": getattr(args, "max_attempts", None),
        "completion_markers": getattr(args, "marker", None),
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    # A credential given on the command line replaces the profile's one
    if args.keyfile:
        overrides["ssh_password"] = None
    elif args.password:
        overrides["ssh_key"] = None
    _cfg.apply_profile(overrides)
    return _cfg


def _connection_params(cfg):
    from pvetunnel.errors import ConfigError
    from pvetunnel.types import ConnectionParameters

    if not cfg.SOURCE_HOST:
        raise ConfigError("source server is required (--source or 'source' in .pvetunnel)")
    if cfg.SSH_KEY_PATH and not Path(cfg.SSH_KEY_PATH).is_file():
        raise ConfigError(f"key file not found: {cfg.SSH_KEY_PATH}")
    return ConnectionParameters(
        host=cfg.SOURCE_HOST,
        port=cfg.REMOTE_PORT,
        username=cfg.SSH_USER,
        password=cfg.SSH_PASSWORD,
        key_filename=cfg.SSH_KEY_PATH,
    )


def _forwarding_spec(cfg):
    from pvetunnel.errors import ConfigError
    from pvetunnel.types import ForwardingSpec

    if not cfg.DESTINATION_HOST:
        raise ConfigError("destination server is required (--destination or 'destination' in .pvetunnel)")
    return ForwardingSpec(
        dest_host=cfg.DESTINATION_HOST,
        dest_port=cfg.REMOTE_PORT,
        local_port=cfg.LOCAL_PORT,
        bind_address=cfg.BIND_ADDRESS,
    )


def _operation(cfg, args):
    from pvetunnel.types import OperationDescriptor

    return OperationDescriptor(
        vm_id=args.vm_id,
        source_node=args.source_node,
        destination_node=getattr(args, "destination_node", None) or "",
        token_name=cfg.TOKEN_NAME,
        token_value=cfg.TOKEN_VALUE,
    )


def _close_on_enter(event: threading.Event, prompt: str):
    """Set *event* when the operator presses Enter (or stdin reaches EOF)."""

    def _wait_for_enter():
        try:
            sys.stdin.readline()
        finally:
            event.set()

    print(prompt, flush=True)
    threading.Thread(target=_wait_for_enter, name="end-of-session", daemon=True).start()


# ── init ─────────────────────────────────────────────────────────────────────

def cmd_init(args):
    """Create a .pvetunnel profile file in the current directory."""
    from pvetunnel import config as _cfg

    target = Path.cwd() / _cfg.PROJECT_FILE
    if target.exists() and not args.force:
        print(f"error: {_cfg.PROJECT_FILE} already exists in {Path.cwd()}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    g_defaults = _cfg.load_global_config().get("defaults", {}) or {}

    def _yq(value) -> str:
        """Wrap a string in YAML single quotes, escaping embedded single quotes."""
        return "'" + str(value).replace("'", "''") + "'"

    source = args.source or g_defaults.get("source", "")
    destination = args.destination or g_defaults.get("destination", "")
    user = args.user or g_defaults.get("user", _cfg.SSH_USER)
    local_port = args.local_port or int(g_defaults.get("local_port", _cfg.LOCAL_PORT))
    remote_port = args.remote_port or int(g_defaults.get("remote_port", _cfg.REMOTE_PORT))

    lines = [
        "# .pvetunnel - pvetunnel project configuration",
        "#",
        "# profiles: list of tunnel profiles for this project.",
        "# Secrets (ssh_password, token_value) are better passed on the command line.",
        "profiles:",
        f"  - name: {args.profile or 'default'}",
        f"    source: {_yq(source)}",
        f"    destination: {_yq(destination)}",
        f"    user: {_yq(user)}",
        f"    local_port: {local_port}",
        f"    remote_port: {remote_port}",
        f"    poll_interval: {_cfg.POLL_INTERVAL:g}",
        f"    max_attempts: {_cfg.MAX_ATTEMPTS}",
    ]
    if args.keyfile:
        lines.append(f"    ssh_key: {_yq(args.keyfile.replace(chr(92), '/'))}")

    content = "\n".join(lines) + "\n"

    if args.dry_run:
        print(f"[dry-run] Would write {target}:")
        print(content)
        return

    target.write_text(content, encoding="utf-8")
    print(f"Created {target}")
    if args.verbose:
        print(content)


# ── migrate ──────────────────────────────────────────────────────────────────

def cmd_migrate(args) -> int:
    """Run a full tunnel + migration session."""
    from pvetunnel.core.monitor import SubstringPredicate
    from pvetunnel.core.orchestrator import MigrationOrchestrator, Outcome, Stage, console_reporter
    from pvetunnel.core.runner import RemoteCommandRunner
    from pvetunnel.core.ssh_manager import TransportSession
    from pvetunnel.types import MonitorSettings

    cfg = _load_config(args)
    print("Starting Proxmox SSH tunnel for VM migration...")
    params = _connection_params(cfg)
    forwarding = _forwarding_spec(cfg)
    operation = _operation(cfg, args)
    cancel = threading.Event()

    def reporter(stage, message):
        console_reporter(stage, message)
        if args.keep_open and stage in (Stage.COMPLETED, Stage.TIMED_OUT, Stage.LAUNCH_FAILED):
            _close_on_enter(cancel, "Keeping tunnel open. Press Enter to close the connection...")

    orchestrator = MigrationOrchestrator(
        params, forwarding, operation,
        session=TransportSession(connect_timeout=cfg.CONNECT_TIMEOUT),
        runner_factory=lambda session: RemoteCommandRunner(session, timeout=cfg.COMMAND_TIMEOUT),
        predicate=SubstringPredicate(cfg.COMPLETION_MARKERS),
        settings=MonitorSettings(poll_interval=cfg.POLL_INTERVAL, max_attempts=cfg.MAX_ATTEMPTS),
        cancel_event=cancel,
        reporter=reporter,
        hold_open=args.keep_open,
    )
    report = orchestrator.run()
    print("SSH tunnel closed.")
    return {
        Outcome.COMPLETED: EXIT_OK,
        Outcome.TIMED_OUT: EXIT_TIMED_OUT,
        Outcome.CANCELLED: EXIT_INTERRUPTED,
    }.get(report.outcome, EXIT_ERROR)


# ── tunnel ───────────────────────────────────────────────────────────────────

def cmd_tunnel(args) -> int:
    """Open the tunnel and hold it until Enter / Ctrl+C."""
    from pvetunnel.core.ssh_manager import TransportSession

    cfg = _load_config(args)
    params = _connection_params(cfg)
    forwarding = _forwarding_spec(cfg)
    params.validate()
    forwarding.validate()

    done = threading.Event()
    with TransportSession(connect_timeout=cfg.CONNECT_TIMEOUT) as session:
        session.connect(params)
        session.forward(forwarding)
        print(f"SSH tunnel established: {forwarding.describe()}")
        _close_on_enter(done, "Press Enter to close the connection...")
        done.wait()
    print("SSH tunnel closed.")
    return EXIT_OK


# ── status ───────────────────────────────────────────────────────────────────

def cmd_status(args) -> int:
    """Run the status query once and report whether the VM has left the source."""
    from pvetunnel.core.monitor import SubstringPredicate
    from pvetunnel.core.runner import RemoteCommandRunner
    from pvetunnel.core.ssh_manager import TransportSession
    from pvetunnel.operations.migration import build_status_command

    cfg = _load_config(args)
    params = _connection_params(cfg)
    operation = _operation(cfg, args)
    predicate = SubstringPredicate(cfg.COMPLETION_MARKERS)

    with TransportSession(connect_timeout=cfg.CONNECT_TIMEOUT) as session:
        session.connect(params)
        result = RemoteCommandRunner(session, timeout=cfg.COMMAND_TIMEOUT).execute(
            build_status_command(operation))

    if result.output.strip():
        print(result.output.rstrip())
    done = predicate(result.output)
    print(f"\nVM {operation.vm_id} on {operation.source_node}: "
          f"{'no longer running there (migrated?)' if done else 'still present'}")
    return EXIT_OK if done else EXIT_TIMED_OUT


# ── main ─────────────────────────────────────────────────────────────────────

def _add_connection_args(p, with_destination=True, with_local_port=True):
    p.add_argument("-s", "--source", metavar="HOST",
                   help="Source Proxmox server address")
    if with_destination:
        p.add_argument("-d", "--destination", metavar="HOST",
                       help="Destination Proxmox server address")
    p.add_argument("-u", "--username", metavar="NAME",
                   help="SSH username (default: root)")
    cred = p.add_mutually_exclusive_group()
    cred.add_argument("-p", "--password", metavar="SECRET",
                      help="SSH password")
    cred.add_argument("-k", "--keyfile", metavar="PATH",
                      help="Path to SSH private key file")
    if with_local_port:
        p.add_argument("-l", "--local-port", type=int, metavar="N",
                       help="Local port for the SSH tunnel (default: 22222)")
    p.add_argument("-r", "--remote-port", type=int, metavar="N",
                   help="SSH port on both Proxmox hosts (default: 22)")
    p.add_argument("--profile", metavar="NAME", default="default",
                   help="Profile to use (default: default)")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Show extra output")


def _add_vm_args(p, with_destination_node=True):
    p.add_argument("--vm-id", type=int, required=True, metavar="ID",
                   help="VM ID to migrate")
    p.add_argument("--source-node", required=True, metavar="NODE",
                   help="Source Proxmox node name")
    if with_destination_node:
        p.add_argument("--destination-node", required=True, metavar="NODE",
                       help="Destination Proxmox node name")
    p.add_argument("--token-name", metavar="NAME",
                   help="API token name (format: user@pam!token)")
    p.add_argument("--token-value", metavar="SECRET",
                   help="API token value")
    p.add_argument("--marker", action="append", metavar="TEXT",
                   help="Status text that means the migration is done (repeatable; "
                        "default: '\"status\":\"stopped\"' and 'not found')")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pvetunnel",
        description="SSH tunnel + live VM migration driver for Proxmox VE",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # ── init ──────────────────────────────────────────────────────────────────
    init_p = subparsers.add_parser(
        "init",
        help="Create a .pvetunnel config file in the current directory",
        description="Create a .pvetunnel YAML config file for this project.",
    )
    init_p.add_argument("--source", metavar="HOST", help="Source Proxmox server address")
    init_p.add_argument("--destination", metavar="HOST", help="Destination Proxmox server address")
    init_p.add_argument("--user", metavar="NAME", help="SSH username (default: root)")
    init_p.add_argument("--keyfile", metavar="PATH", help="Path to SSH private key file")
    init_p.add_argument("--local-port", type=int, metavar="N", help="Local tunnel port (default: 22222)")
    init_p.add_argument("--remote-port", type=int, metavar="N", help="SSH port (default: 22)")
    init_p.add_argument("--profile", metavar="NAME", default="default",
                        help="Profile name to create (default: default)")
    init_p.add_argument("--force", action="store_true", help="Overwrite existing .pvetunnel")
    init_p.add_argument("-n", "--dry-run", action="store_true", help="Preview without writing files")
    init_p.add_argument("-v", "--verbose", action="store_true", help="Show extra output")

    # ── migrate ───────────────────────────────────────────────────────────────
    migrate_p = subparsers.add_parser(
        "migrate",
        help="Tunnel to the destination and live-migrate a VM",
        description="Open an SSH tunnel, launch the migration and poll until it finishes.",
    )
    _add_connection_args(migrate_p)
    _add_vm_args(migrate_p)
    migrate_p.add_argument("--poll-interval", type=float, metavar="SEC",
                           help="Seconds between status checks (default: 10)")
    migrate_p.add_argument("--max-attempts", type=int, metavar="N",
                           help="Status checks before giving up (default: 30)")
    migrate_p.add_argument("--keep-open", action="store_true",
                           help="Keep the tunnel open after the migration until Enter is pressed")

    # ── tunnel ────────────────────────────────────────────────────────────────
    tunnel_p = subparsers.add_parser(
        "tunnel",
        help="Open the SSH tunnel only",
        description="Forward a local port to the destination through the source host.",
    )
    _add_connection_args(tunnel_p)

    # ── status ────────────────────────────────────────────────────────────────
    status_p = subparsers.add_parser(
        "status",
        help="Query the VM status on the source node",
        description="Run the status query once and check it for completion markers.",
    )
    _add_connection_args(status_p, with_destination=False, with_local_port=False)
    _add_vm_args(status_p, with_destination_node=False)

    return parser


def main(argv=None):
    """CLI entry point for pvetunnel"""
    from pvetunnel.errors import TunnelError
    from pvetunnel.utils.logging import set_verbose

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_ERROR)

    set_verbose(args.verbose)
    handlers = {
        "migrate": cmd_migrate,
        "tunnel": cmd_tunnel,
        "status": cmd_status,
    }
    try:
        if args.command == "init":
            cmd_init(args)
            rc = EXIT_OK
        else:
            rc = handlers[args.command](args)
    except TunnelError as exc:
        from pvetunnel.utils.logging import redact
        print(f"error: {redact(str(exc))}", file=sys.stderr)
        rc = EXIT_ERROR
    except KeyboardInterrupt:
        print("\ninterrupted; SSH tunnel closed.", file=sys.stderr)
        rc = EXIT_INTERRUPTED
    sys.exit(rc)


if __name__ == "__main__":
    main()
