import pytest

from relaydrop.__main__ import build_parser


def test_send_arguments():
    args = build_parser().parse_args(["--relay", "ws://relay.test/ws", "--no-progress", "send", "movie.mkv"])
    assert args.command == "send" and args.file.name == "movie.mkv"
    assert args.relay == "ws://relay.test/ws" and args.no_progress


def test_receive_arguments():
    args = build_parser().parse_args(
        ["--log-level", "debug", "receive", "http://localhost:3001/receive?id=x", "--out", "dl"]
    )
    assert args.command == "receive" and args.sender.endswith("id=x")
    assert args.out.name == "dl" and args.log_level == "DEBUG"


@pytest.mark.parametrize("argv", [[], ["send"], ["--log-level", "loud", "send", "a.bin"]])
def test_bad_arguments_exit(argv):
    with pytest.raises(SystemExit):
        build_parser().parse_args(argv)
