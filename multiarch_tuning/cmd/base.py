"""
Shared shape of the multiarch-tuning-operator subcommands
"""

# Standard
import abc
import argparse


class CmdBase(abc.ABC):
    """A subcommand registers itself under its name, with the first line of
    its module docstring as help, and adds its own runtime flags. The library
    config flags are added by the entrypoint.
    """

    name = None

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Register the subcommand and its runtime flags

        Args:
            subparsers (argparse._SubParsersAction): The subcommand section of
                the entrypoint's parser

        Returns:
            subparser (argparse.ArgumentParser): The subcommand's parser
        """
        assert self.name, f"{type(self).__name__} has no command name"
        summary = (self.__doc__ or "").strip().splitlines()
        parser = subparsers.add_parser(self.name, help=summary[0] if summary else None)
        self.add_args(parser.add_argument_group("Runtime Configuration"))
        return parser

    def add_args(self, group: argparse._ArgumentGroup):
        """Commands without runtime flags keep the default"""

    @abc.abstractmethod
    def cmd(self, args: argparse.Namespace):
        """Run the subcommand after the library config has been updated from
        the parsed flags
        """
