import sys
import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

import config
from config import XOS
from utils.engine import BalanceReader, Balances
from utils.errors import ChainQueryError, ConfigError
from utils.helper import Web3Helper

console = Console()


class BalanceChecker:
    """
    Print the configured wallet's XOS and WXOS balances.
    Uses the same BalanceReader as the wrap/unwrap session.
    """
    def __init__(self, settings, chain=None):
        self.console = console
        self.settings = settings

        logging.basicConfig(level=settings.log_level, handlers=[RichHandler(console=self.console)])

        self.web3h = chain or Web3Helper(settings, console=self.console)
        self.wallet = self.web3h.load_wallet()
        self.reader = BalanceReader(self.web3h, settings)

    def collect_balances(self) -> Balances:
        with self.console.status("[yellow]Loading balances...[/yellow]"):
            return self.reader.read_balances(self.wallet.address)

    def render(self, balances: Balances) -> Table:
        table = Table(title=f"Wallet {self.wallet.address}")
        table.add_column("Asset", style="cyan")
        table.add_column("Balance", justify="right", style="green")
        table.add_row(XOS.NATIVE_SYMBOL, balances.native)
        table.add_row(f"{XOS.WRAPPED_SYMBOL} ({self.settings.contract_address})", balances.wrapped)
        return table

    def run(self) -> bool:
        self.console.rule("[bold cyan]Fetching balances")
        try:
            balances = self.collect_balances()
        except ChainQueryError as e:
            self.console.log(f"[red]Failed to load balances: {e}[/red]")
            return False
        self.console.print(self.render(balances))
        return True


def main():
    try:
        settings = config.load_settings()
        app = BalanceChecker(settings)
    except ConfigError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)
    if not app.run():
        sys.exit(1)


if __name__ == "__main__":
    main()
