import argparse
import asyncio
import json
import sys

from .config import SessionConfig
from .errors import KernelError
from .outputs import KernelOutput, OutputKind
from .session import KernelSession


def _session_args(parser:argparse.ArgumentParser) -> None:
    parser.add_argument("--python", help="Interpreter that runs the kernel (default: this one)")
    parser.add_argument("--kernel-module", help="Module started with -m (default: ipykernel_launcher)")
    parser.add_argument("--cwd", help="Working directory for the kernel")


def _config(args:argparse.Namespace) -> SessionConfig:
    overrides = {k: v for k, v in dict(python=args.python, kernel_module=args.kernel_module, cwd=args.cwd).items() if v}
    return SessionConfig(**overrides)


def _print_output(out:KernelOutput) -> None:
    stream = sys.stderr if out.kind in (OutputKind.STDERR, OutputKind.ERROR) else sys.stdout
    if out.kind in (OutputKind.STDOUT, OutputKind.STDERR): stream.write(out.content)
    elif out.mime in ("image/png", "image/jpeg"): print(f"<{out.mime} {len(out.content)} bytes base64>", file=stream)
    else: print(out.content, file=stream)
    stream.flush()


async def _exec(args:argparse.Namespace) -> int:
    code = sys.stdin.read() if args.code == "-" else args.code
    async with KernelSession(config=_config(args)) as session:
        with session.subscribe("output", lambda out, parent: _print_output(out)):
            result = await session.execute(code, timeout=args.timeout)
    if not result.success: print(f"minikc: {result.message}", file=sys.stderr)
    return 0 if result.success and not result.errors else 1


async def _info(args:argparse.Namespace) -> int:
    async with KernelSession(config=_config(args)) as session: info = session.kernel_info
    print(json.dumps(info, indent=2, default=str))
    return 0


def main(argv:list[str]|None=None) -> int:
    parser = argparse.ArgumentParser(prog="minikc", description="Run code in a Jupyter kernel over the wire protocol")
    sub = parser.add_subparsers(dest="command", required=True)
    p_exec = sub.add_parser("exec", help="Execute CODE in a fresh kernel and print its outputs")
    _session_args(p_exec)
    p_exec.add_argument("--timeout", type=float, help="Seconds to wait for the execution to finish")
    p_exec.add_argument("code", help="Source to run, or - to read it from stdin")
    p_info = sub.add_parser("info", help="Print the kernel_info reply as JSON")
    _session_args(p_info)
    args = parser.parse_args(argv)
    run = dict(exec=_exec, info=_info)[args.command]
    try: return asyncio.run(run(args))
    except KernelError as exc:
        print(f"minikc: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
