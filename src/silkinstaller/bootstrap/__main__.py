"""
Usage::

    python -m silkinstaller.bootstrap [--root DIR] [--profile NAME] [--java PATH] [--print]
                                      [JVM flags...] -- [application args...]

Without ``--`` every argument the launcher does not recognise is passed to the
application unchanged.
"""

import argparse
import os
import shlex
import subprocess
import sys
from typing import List, Optional, Sequence, Tuple

from silkinstaller.bootstrap.launcher import build_command, launch, load_launch_descriptor
from silkinstaller.installer_exceptions import BootstrapInconsistent
from silkinstaller.installer_settings import DEFAULT_JAVA_EXECUTABLE, DEFAULT_PROFILE_NAME

EXIT_INCONSISTENT = 3


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m silkinstaller.bootstrap",
        description="Launch the installed loader from its committed launch descriptor.",
        allow_abbrev=False,
    )
    parser.add_argument("--root", default=os.getcwd(), help="Installation root (default: current directory)")
    parser.add_argument("--profile", default=DEFAULT_PROFILE_NAME, help="Profile to launch")
    parser.add_argument("--java", default=DEFAULT_JAVA_EXECUTABLE, help="Java executable")
    parser.add_argument("--print", action="store_true", dest="print_only", help="Print the command instead of running it")
    return parser


def split_arguments(argv: Sequence[str]) -> Tuple[List[str], Optional[List[str]]]:
    """
    Split ``argv`` at the first ``--``. The second element is None when there is none.
    """
    argv = list(argv)
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1 :]
    return argv, None


def parse_arguments(argv: Sequence[str]) -> Tuple[argparse.Namespace, List[str], List[str]]:
    """
    Returns the launcher options, the caller's JVM flags and the application arguments.
    """
    before, after = split_arguments(argv)
    args, unknown = create_parser().parse_known_args(before)
    if after is None:
        return args, [], unknown
    return args, unknown, after


def format_command(command: Sequence[str]) -> str:
    if os.name == "nt":
        return subprocess.list2cmdline(list(command))
    return shlex.join(command)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args, jvm_flags, app_args = parse_arguments(sys.argv[1:] if argv is None else argv)
    try:
        if args.print_only:
            spec = load_launch_descriptor(args.root, args.profile)
            print(format_command(build_command(spec, java=args.java, jvm_flags=jvm_flags, app_args=app_args)))
            return 0
        launch(args.root, args.profile, java=args.java, jvm_flags=jvm_flags, app_args=app_args)
    except BootstrapInconsistent as e:
        print(f"silkinstaller: {e}. Re-run the installer to repair the installation.", file=sys.stderr)
        return EXIT_INCONSISTENT
    return 0


if __name__ == "__main__":
    sys.exit(main())
