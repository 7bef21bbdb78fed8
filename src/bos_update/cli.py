"""
bos_update - Hook Command Line
Entry point called from the package's preinst/postinst/postrm scripts.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from bos_update.descriptor import DEFAULT_CONFIG_PATH, load_descriptor
from bos_update.errors import BosUpdateError, DescriptorError
from bos_update.installer import ScheduledTaskInstaller

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False, log_file: Path = None) -> None:
    """Log to stderr, and to log_file if given."""
    handlers = [logging.StreamHandler()]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="bos-update-hooks",
        description="Install or remove the periodic update check",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bos-update-hooks install              # copy script, add cron entry
  bos-update-hooks --root /tmp/img preinst
  bos-update-hooks postrm               # remove cron entry, restart cron
  bos-update-hooks status
        """,
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH,
                        help="Package descriptor JSON file")
    parser.add_argument("--root", type=Path, default=os.environ.get("IPKG_INSTROOT") or None,
                        help="Install root (default: $IPKG_INSTROOT)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("install", help="Install the script and register the cron entry")
    commands.add_parser("preinst", help="Register the cron entry only")
    commands.add_parser("postrm", help="Remove the cron entry and restart cron")
    commands.add_parser("uninstall", help="Alias of postrm")
    commands.add_parser("status", help="Show install status as JSON")
    commands.add_parser("control", help="Print the opkg control stanza")

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_arguments(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        descriptor = load_descriptor(args.config)
    except DescriptorError as e:
        logger.error(f"Invalid package descriptor: {e}")
        return 2

    if args.command == "control":
        sys.stdout.write(descriptor.render_control())
        return 0

    installer = ScheduledTaskInstaller(descriptor, root=args.root)

    if args.command == "install":
        result = installer.install()
    elif args.command == "preinst":
        result = installer.preinst()
    elif args.command in ("postrm", "uninstall"):
        result = installer.uninstall()
    else:
        try:
            status = installer.get_status()
        except BosUpdateError as e:
            logger.error(f"Cannot read status: {e}")
            return 1
        print(json.dumps(status, indent=2))
        return 0

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
