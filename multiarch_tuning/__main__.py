#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the multiarch tuning
operator
"""

# Standard
from typing import Dict, Tuple
import argparse

# First Party
import aconfig
import alog

# Local
from . import config
from .cmd import CmdBase, RunOperatorCmd, RunWebhookCmd
from .config import library_config
from .log_format import MultiarchJsonFormatter

## Constants ###################################################################

log = alog.use_channel("MAIN")

## Helpers #####################################################################


def add_library_config_args(parser, config_obj=None, path=None):
    """Automatically add args for all elements of the library config"""
    path = path or []
    setters = {}
    config_obj = config_obj or library_config
    for key, val in config_obj.items():
        sub_path = path + [key]

        # If this is a nested arg, recurse
        if isinstance(val, aconfig.AttributeAccessDict):
            sub_setters = add_library_config_args(parser, config_obj=val, path=sub_path)
            for dest_name, nested_path in sub_setters.items():
                setters[dest_name] = nested_path

        # Otherwise, add an argument explicitly
        else:
            arg_name = ".".join(sub_path)
            dest_name = "_".join(sub_path)
            kwargs = {
                "default": val,
                "dest": dest_name,
                "help": f"Library config override for {arg_name} (see multiarch_tuning.config)",
            }
            if isinstance(val, list):
                kwargs["nargs"] = "*"
            elif isinstance(val, bool):
                kwargs["action"] = "store_true"
            else:
                type_name = None
                if val is not None:
                    type_name = type(val)
                kwargs["type"] = type_name

            if (
                f"--{arg_name}"
                not in parser._option_string_actions  # pylint: disable=protected-access
            ):
                parser.add_argument(f"--{arg_name}", **kwargs)
                setters[dest_name] = sub_path
    return setters


def update_library_config(args, setters):
    """Update the library config values based on the parsed arguments"""
    for dest_name, config_path in setters.items():
        config_obj = library_config
        while len(config_path) > 1:
            config_obj = config_obj[config_path[0]]
            config_path = config_path[1:]
        config_obj[config_path[0]] = getattr(args, dest_name)


def add_command(
    subparsers: argparse._SubParsersAction,
    cmd: CmdBase,
) -> Tuple[argparse.ArgumentParser, Dict[str, str]]:
    """Add the subparser and set up the default fun call"""
    parser = cmd.add_subparser(subparsers)
    parser.set_defaults(func=cmd.cmd)
    library_args = parser.add_argument_group("Library Configuration")
    library_config_setters = add_library_config_args(library_args)
    return parser, library_config_setters


def build_parser() -> Tuple[argparse.ArgumentParser, argparse.ArgumentParser, dict]:
    """Build the main parser with its subcommands

    Returns:
        parser:  argparse.ArgumentParser
            The main parser
        run_operator_parser:  argparse.ArgumentParser
            The parser of the default command
        library_config_setters:  dict
            The mapping from argument destinations to library config paths
    """
    parser = argparse.ArgumentParser(description=__doc__)
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    run_operator_parser, library_config_setters = add_command(
        subparsers, RunOperatorCmd()
    )
    _, webhook_setters = add_command(subparsers, RunWebhookCmd())
    library_config_setters.update(webhook_setters)
    return parser, run_operator_parser, library_config_setters


## Main ########################################################################


def main(argv=None):
    """The main module provides the executable entrypoint for the operator"""
    parser, run_operator_parser, library_config_setters = build_parser()
    subparsers = next(
        action
        for action in parser._actions  # pylint: disable=protected-access
        if isinstance(action, argparse._SubParsersAction)
    )

    # Use a preliminary parser to check for the presence of a command and fall
    # back to the default command if not found
    check_parser = argparse.ArgumentParser(add_help=False)
    check_parser.add_argument("command", nargs="?")
    check_args, _ = check_parser.parse_known_args(argv)
    if check_args.command not in subparsers.choices:
        args = run_operator_parser.parse_args(argv)
    else:
        args = parser.parse_args(argv)

    # Provide overrides to the library configs
    update_library_config(args, library_config_setters)

    # Reconfigure logging
    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=MultiarchJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )

    # Run the command's function
    args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
