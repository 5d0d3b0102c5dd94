"""
CLI interface for InvoiceGen.

Interactive administration shell: configuration, database setup, admin
accounts and the scheduled maintenance jobs.
"""

import argparse
import json
import logging
import shlex
from typing import Any, Dict, List, Optional

import cmd

from services.auth_service import AuthService
from services.base_service import ServiceContext
from services.invoice_service import InvoiceService
from storage.database import Database
from utils.error_handling import InvoiceGenError
from utils.health_check import HealthCheckManager

logger = logging.getLogger("invoicegen.cli")


class InvoiceGenCLI(cmd.Cmd):
    """Interactive CLI for InvoiceGen."""

    intro = "Welcome to the InvoiceGen CLI. Type help or ? to list commands.\n"
    prompt = "invoicegen> "

    def __init__(self, config: Dict[str, Any], database: Optional[Database] = None):
        """
        Initialize the CLI.

        Args:
            config: Configuration dictionary
            database: Database to operate on; built from ``config`` when omitted
        """
        super().__init__()
        self.config = config
        self.database = database or Database.from_config(config)
        self.context = ServiceContext.from_config(config)
        self.env = config.get("environment", "development")

    def emptyline(self):
        """Do nothing on empty line."""
        pass

    def _parse(self, parser: argparse.ArgumentParser, arg: str) -> Optional[argparse.Namespace]:
        try:
            return parser.parse_args(shlex.split(arg))
        except SystemExit:
            # argparse already printed the usage message
            return None

    def do_exit(self, arg):
        """Exit the InvoiceGen CLI."""
        print("Goodbye!")
        return True

    def do_quit(self, arg):
        """Exit the InvoiceGen CLI."""
        return self.do_exit(arg)

    def do_config(self, arg):
        """Display or reload configuration: config show [key] | config reload"""
        parser = argparse.ArgumentParser(prog="config")
        parser.add_argument("action", choices=["show", "reload"], help="Action to perform")
        parser.add_argument("key", nargs="?", help="Dotted configuration key")
        parsed_args = self._parse(parser, arg)
        if parsed_args is None:
            return

        if parsed_args.action == "reload":
            from config.config_loader import load_config
            self.config = load_config(reload=True, env=self.env)
            self.context = ServiceContext.from_config(self.config)
            print("Configuration reloaded.")
            return

        value: Any = self.config
        if parsed_args.key:
            for key in parsed_args.key.split("."):
                if not isinstance(value, dict) or key not in value:
                    print(f"Configuration key not found: {parsed_args.key}")
                    return
                value = value[key]
            print(f"{parsed_args.key} = {json.dumps(value, indent=2, default=str)}")
        else:
            print(json.dumps(value, indent=2, default=str))

    def do_init_db(self, arg):
        """Create any missing database tables."""
        self.database.create_all()
        print("Database tables are ready.")

    def do_check_db(self, arg):
        """Check the database connection."""
        latency = self.database.check_connection()
        if latency is None:
            print("Database connection FAILED.")
        else:
            print(f"Database connection OK ({latency}ms).")

    def do_make_admin(self, arg):
        """Grant admin rights: make_admin <email>"""
        email = arg.strip()
        if not email:
            print("Usage: make_admin <email>")
            return
        try:
            with self.database.session_scope() as session:
                print(AuthService(session, self.context).make_admin(email))
        except InvoiceGenError as e:
            print(f"Error: {e.message}")

    def do_list_admins(self, arg):
        """List admin accounts."""
        with self.database.session_scope() as session:
            admins: List[Any] = AuthService(session, self.context).list_admins()
            if not admins:
                print("No admin users.")
                return
            print("Admin users:")
            for user in admins:
                print(f"  - {user.email} ({user.name})")

    def do_update_overdue(self, arg):
        """Mark pending invoices past their due date as overdue."""
        with self.database.session_scope() as session:
            count = InvoiceService(session, self.context).update_overdue()
        print(f"Updated {count} overdue invoice(s).")

    def do_health(self, arg):
        """Run the health checks."""
        report = HealthCheckManager(self.config, self.database).run_all_checks()
        print(json.dumps(report, indent=2, default=str))

    def do_status(self, arg):
        """Show system status."""
        print(f"InvoiceGen Status ({self.env} environment)")
        print("-" * 50)
        print(f"Environment: {self.env}")
        print(f"Database: {self.database.engine.url.render_as_string(hide_password=True)}")
        print(f"App URL: {self.context.app_url}")
        print("-" * 50)


def run_cli(config: Dict[str, Any], database: Optional[Database] = None) -> None:
    """
    Run the InvoiceGen CLI.

    Args:
        config: Configuration dictionary
        database: Database to operate on
    """
    cli = InvoiceGenCLI(config=config, database=database)
    cli.cmdloop()
