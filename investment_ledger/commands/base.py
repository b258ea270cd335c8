"""Base command class and related structures."""

import argparse
from abc import ABC, abstractmethod

from investment_ledger.config import AppConfig
from investment_ledger.container import ServiceContainer
from investment_ledger.db import Database


class Command(ABC):
    """Base class for all CLI commands."""

    name: str  # Command name used in CLI
    help: str  # Help text shown in CLI

    def __init__(self, config: AppConfig, db: Database, container: ServiceContainer):
        self.config: AppConfig = config
        self.db: Database = db
        self.container: ServiceContainer = container

    def user_id(self, args: argparse.Namespace) -> str:
        """The --user given on the command line, else the configured default user."""
        return getattr(args, "user", None) or self.config.default_user_id

    @classmethod
    @abstractmethod
    def setup_parser(cls, subparser) -> None:
        """
        Configure the argument parser for this command.

        Args:
            subparser: The subparser to configure
        """

    @abstractmethod
    def execute(self, args: argparse.Namespace) -> int:
        """
        Execute the command with the given arguments.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """


class CommandRegistry:
    """Registry of available commands."""

    _commands: dict[str, type[Command]] = {}

    @classmethod
    def register(cls, command_class: type[Command]) -> type[Command]:
        """Register a command class with the registry. Usable as a decorator."""
        cls._commands[command_class.name] = command_class
        return command_class

    @classmethod
    def get_commands(cls) -> dict[str, type[Command]]:
        return cls._commands.copy()
