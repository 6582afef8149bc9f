import argparse
import asyncio
import os
import sys
import traceback
from contextlib import AsyncExitStack
from pathlib import Path

from relaydrop.avails import ReconnectExhausted, TransferError, const
from relaydrop.avails.status import ProgressStatus
from relaydrop.configurations import configure
from relaydrop.core.peers import ReceiverPeer, SenderPeer
from relaydrop.managers import logmanager
from relaydrop.transfers._fileobject import stringify_size


def build_parser():
    parser = argparse.ArgumentParser(
        prog=const.APP_NAME,
        description="Send one file to a browser or another peer through a websocket relay",
    )
    parser.add_argument('--relay', metavar='URL', help=f"relay websocket url (default {const.RELAY_URL})")
    parser.add_argument('--config', metavar='PATH', type=Path, help="INI file overriding the defaults")
    parser.add_argument('--no-progress', action='store_true', help="do not draw a progress bar")
    parser.add_argument(
        '--log-level',
        default='WARNING',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        type=str.upper,
        help="level of log records printed on stderr",
    )

    commands = parser.add_subparsers(dest='command', required=True)

    send = commands.add_parser('send', help="register as sender and wait for a receiver")
    send.add_argument('file', type=Path, help="file to send")

    receive = commands.add_parser('receive', help="fetch a file from a waiting sender")
    receive.add_argument('sender', metavar='ID_OR_LINK', help="sender id or share link")
    receive.add_argument('--out', metavar='DIR', type=Path, help="directory to write the received file into")

    return parser


def _print_link(link):
    print(f"share this link with the receiver:\n    {link}", flush=True)


async def send_file(args):
    peer = SenderPeer(
        args.file,
        url=args.relay,
        status_updater=ProgressStatus(show_bar=not args.no_progress),
        on_waiting=_print_link,
    )
    print(f"sender id: {peer.session.local_id}", flush=True)
    ack = await peer.run()
    if peer.receiver_error is not None:
        print(f"sent {peer.file_item.name}, receiver reported: {peer.receiver_error}", file=sys.stderr)
    elif ack is None:
        print(f"sent {peer.file_item.name}, receiver did not acknowledge")
    else:
        print(f"sent {peer.file_item.name}, receiver got {stringify_size(ack.size or 0)}")


async def receive_file(args):
    peer = ReceiverPeer(
        args.sender,
        url=args.relay,
        status_updater=ProgressStatus(show_bar=not args.no_progress),
    )
    metadata, _ = await peer.run()
    path = await peer.save(args.out)
    print(f"received {metadata.name} ({stringify_size(metadata.size)}) -> {path}")


async def _main(args):
    async with AsyncExitStack() as exit_stack:
        configure.set_paths()
        await logmanager.initiate(exit_stack, console_level=args.log_level)
        if args.config is not None:
            await configure.load_configs(args.config)
        elif Path(const.PATH_CONFIG_FILE).exists():
            await configure.load_configs()
        if const.debug:
            configure.print_constants()

        match args.command:
            case 'send':
                await send_file(args)
            case 'receive':
                await receive_file(args)


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(_main(args), debug=const.debug)
    except ReconnectExhausted as re:
        print(f"relay unreachable: {re}", file=sys.stderr)
        return 1
    except (TransferError, ValueError, OSError) as e:
        print(f"transfer failed: {e}", file=sys.stderr)
        if const.debug:
            traceback.print_exc()
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    const.debug = bool(os.environ.get("RELAYDROP_DEBUG"))
    sys.exit(main())
