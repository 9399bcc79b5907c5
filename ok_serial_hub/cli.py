#!/usr/bin/env python3

"""CLI tool to list, talk to serial ports and run the companion server"""

import argparse
import json
import logging
import re
import threading
import time

import msgspec
import ok_logging_setup

import ok_serial_hub

ok_logging_setup.skip_traceback_for(ok_serial_hub.HubException)


def main():
    parser = argparse.ArgumentParser()
    subparsers = parser.add_subparsers(title="actions", dest="command")

    list_parser = subparsers.add_parser("list", help="List known serial ports")
    list_style_group = list_parser.add_mutually_exclusive_group()
    list_style_group.add_argument(
        "--name", "-n", action="store_true", help="print device file only"
    )
    list_style_group.add_argument(
        "--verbose", "-v", action="store_true", help="print detailed properties"
    )
    list_style_group.add_argument(
        "--json", action="store_true", help="print JSON descriptors"
    )

    subparsers.add_parser("rates", help="List standard baud rates")

    chat_parser = subparsers.add_parser("chat", help="Send/receive on a port")
    chat_parser.add_argument("port", help="port device name")
    chat_parser.add_argument("baud", type=int, nargs="?", default=9600)
    chat_parser.add_argument("--data-bits", type=int, default=8)
    chat_parser.add_argument("--stop-bits", type=int, default=1)
    chat_parser.add_argument("--parity", default="none")
    chat_parser.add_argument("--send", "-s", help="text to write (\\r\\n ok)")
    chat_parser.add_argument(
        "--listen", "-l", default=1.0, type=float, help="seconds to read"
    )
    chat_parser.add_argument(
        "--max", "-m", default=1024, type=int, help="bytes per read"
    )

    serve_parser = subparsers.add_parser("serve", help="Run companion server")
    serve_parser.add_argument(
        "--profile", choices=["development", "production"], default=None
    )
    serve_parser.add_argument("--source-dir", help="project source tree")
    serve_parser.add_argument("--resource-dir", help="bundled resources")
    serve_parser.add_argument(
        "--delay", default=0.0, type=float, help="seconds before starting"
    )

    invoke_parser = subparsers.add_parser("invoke", help="Run one command")
    invoke_parser.add_argument("name", help="command name")
    invoke_parser.add_argument("args", nargs="?", default="{}", help="JSON")

    args = parser.parse_args()
    if not args.command:
        args = parser.parse_args(["list"])

    quiet = args.command in ("rates", "invoke") or (
        args.command == "list" and (args.name or args.json)
    )
    level = "warning" if quiet else "info"
    ok_logging_setup.install({"OK_LOGGING_LEVEL": level})

    if args.command == "list":
        run_list(args)
    elif args.command == "rates":
        print(" ".join(str(r) for r in ok_serial_hub.BAUD_RATES))
    elif args.command == "chat":
        run_chat(args)
    elif args.command == "serve":
        run_serve(args)
    elif args.command == "invoke":
        run_invoke(args)


def run_list(args):
    found = ok_serial_hub.scan_serial_ports()
    if args.json:
        print(json.dumps([p.descriptor() for p in found], indent=2))
        return

    if not found:
        ok_logging_setup.exit("❌ No serial ports found")

    num = len(found)
    logging.info("🔌 %d serial port%s found", num, "" if num == 1 else "s")
    for port in found:
        if args.name:
            print(port.name)
        elif args.verbose:
            print(format_detail(port), end="\n\n")
        else:
            print(format_line(port))


def run_chat(args):
    config = ok_serial_hub.PortConfig(
        baud_rate=args.baud,
        data_bits=args.data_bits,
        stop_bits=args.stop_bits,
        parity=args.parity,
    )
    with ok_serial_hub.SerialSessionRegistry() as registry:
        logging.info("🔌 %s", registry.open(args.port, config))
        if args.send is not None:
            text = args.send.encode().decode("unicode-escape")
            count = registry.write(args.port, text)
            logging.info("➡️ Wrote %d bytes", count)

        deadline = time.monotonic() + args.listen
        while time.monotonic() < deadline:
            if text := registry.read(args.port, args.max):
                print(text, end="", flush=True)

        logging.info("👋 %s", registry.close(args.port))


def run_serve(args):
    options = ok_serial_hub.CompanionOptions.from_env(
        profile=args.profile,
        source_dir=args.source_dir,
        resource_dir=args.resource_dir,
    )
    logging.info("🚀 Companion server (%s build)", options.profile)
    with ok_serial_hub.DeviceHub(options, autostart_delay=args.delay) as hub:
        try:
            hub.autostart.result()
            logging.info("🟢 Server running (PID %d)", hub.supervisor.pid)
            threading.Event().wait()
        except KeyboardInterrupt:
            logging.info("🛑 Interrupted, stopping server")


def run_invoke(args):
    try:
        call_args = json.loads(args.args)
        if not isinstance(call_args, dict):
            raise ValueError("not a JSON object")
    except ValueError as ex:
        ok_logging_setup.exit(f"Bad JSON arguments: {ex}")

    with ok_serial_hub.DeviceHub() as hub:
        result = hub.invoke(args.name, call_args)
    print(msgspec.json.encode(result).decode())
    if not result.ok:
        raise SystemExit(1)


def format_line(port: ok_serial_hub.SerialPort) -> str:
    words = [port.name, port.kind]
    try:
        vid_int, pid_int = int(port.attr["vid"], 0), int(port.attr["pid"], 0)
    except (KeyError, ValueError):
        pass
    else:
        words.append(f"{vid_int:04x}:{pid_int:04x}")

    for k in ("serial_number", "description"):
        if v := port.attr.get(k, ""):
            words.append(format_value(v))
    return " ".join(words)


def format_detail(port: ok_serial_hub.SerialPort) -> str:
    label = f"Port: {port.name} ({port.kind})"
    if port.description:
        label += f"\n  {port.description}"
    return label + "".join(
        f"\n  {k}={format_value(v)}" for k, v in port.attr.items()
    )


def format_value(v: str) -> str:
    return repr(v) if re.search(r"""[\s!"'*=?\\]""", v) else v


if __name__ == "__main__":
    main()
