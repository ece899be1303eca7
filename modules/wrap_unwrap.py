import sys
import logging
from datetime import datetime
from typing import Optional

import questionary
from rich.console import Console
from rich.logging import RichHandler

import config
from config import XOS
from utils.engine import (
    BalanceReader,
    Balances,
    ExecutionLoop,
    LoopPosition,
    LoopRun,
    OperationKind,
    TransactionExecutor,
    TransactionOutcome,
    validate_amount,
    validate_repeat_count,
)
from utils.errors import ChainQueryError, ConfigError, ValidationError, WrapperError
from utils.helper import Web3Helper

console = Console()

LINE = "----------------------------------"


class WrapUnwrapManager:
    """
    Interactive XOS <-> WXOS session: shows balances, asks for an action,
    amount and repeat count, then hands the work to ExecutionLoop.
    """

    def __init__(self, settings, chain: Optional[Web3Helper] = None, console: Console = console):
        self.console = console
        self.settings = settings

        logging.basicConfig(level=settings.log_level, handlers=[RichHandler(console=self.console)])

        self.web3h = chain or Web3Helper(settings, console=self.console)
        self.wallet = self.web3h.load_wallet()

        self.balance_reader = BalanceReader(self.web3h, settings)
        self.executor = TransactionExecutor(self.web3h, settings, balance_reader=self.balance_reader)
        self.loop = ExecutionLoop(
            self.executor,
            self.balance_reader,
            should_continue=self.ask_continue,
            on_success=self.report_success,
            on_failure=self.report_failure,
            status=self._status,
        )

    def _status(self, text: str):
        return self.console.status(f"[yellow]{text}[/yellow]")

    # ---------- Screens ----------

    def fetch_balances(self) -> Balances:
        with self._status("Loading balances..."):
            try:
                balances = self.balance_reader.read_balances(self.wallet.address)
            except ChainQueryError:
                self.console.log("[red]Failed to load balances[/red]")
                raise
        return balances

    def main_menu(self, balances: Balances) -> Optional[str]:
        self.console.clear()
        self.console.print("\n[bold blue]XOS Wrap/Unwrap Interface[/bold blue]")
        self.console.print(f"[grey50]{LINE}[/grey50]")
        self.console.print(f"[green]Wallet: {self.wallet.address}[/green]")
        self.console.print(f"[green]{XOS.NATIVE_SYMBOL} Balance: {balances.native}[/green]")
        self.console.print(f"[green]{XOS.WRAPPED_SYMBOL} Balance: {balances.wrapped}[/green]")
        self.console.print(f"[grey50]{LINE}[/grey50]")

        return questionary.select(
            "Choose action:",
            choices=[
                questionary.Choice(title=f"1. Wrap {XOS.NATIVE_SYMBOL} to {XOS.WRAPPED_SYMBOL}", value="wrap"),
                questionary.Choice(title=f"2. Unwrap {XOS.WRAPPED_SYMBOL} to {XOS.NATIVE_SYMBOL}", value="unwrap"),
                questionary.Choice(title="3. Exit", value="exit"),
            ],
        ).ask()

    def ask_amount(self, kind: OperationKind, bound: str):
        def _validate(text):
            try:
                validate_amount(text, bound)
            except ValidationError as e:
                return str(e)
            return True

        raw = questionary.text(
            f"Enter {kind.source_symbol} amount (max {bound}):",
            validate=_validate,
        ).ask()
        if raw is None:
            return None
        return validate_amount(raw, bound)

    def ask_execution_mode(self) -> Optional[int]:
        mode = questionary.select(
            "Choose execution mode:",
            choices=[
                questionary.Choice(title="1. Execute once", value="single"),
                questionary.Choice(title="2. Execute repeatedly", value="loop"),
            ],
        ).ask()
        if mode is None:
            return None
        if mode == "single":
            return 1

        def _validate(text):
            try:
                validate_repeat_count(text)
            except ValidationError as e:
                return str(e)
            return True

        count = questionary.text("Enter number of executions:", validate=_validate).ask()
        if count is None:
            return None
        return validate_repeat_count(count)

    # ---------- Loop callbacks ----------

    def ask_continue(self, position: LoopPosition, error: WrapperError) -> bool:
        answer = questionary.confirm("Continue with the next transaction?", default=True).ask()
        return bool(answer)

    def report_success(self, position: LoopPosition, outcome: TransactionOutcome, balances: Balances) -> None:
        receipt = outcome.receipt
        self.console.log(f"[green]Confirmed in block {receipt.block_number}[/green]")
        self.console.print(f"[grey50]{LINE}[/grey50]")
        self.console.print(f"[green]Transaction {position} succeeded![/green]")
        if self.settings.explorer_url:
            self.console.print(f"[blue]Tx: {self.settings.explorer_url}/tx/{receipt.tx_hash}[/blue]")
        else:
            self.console.print(f"[blue]Tx: {receipt.tx_hash}[/blue]")
        self.console.print(f"[blue]Gas Used: {receipt.gas_used}[/blue]")
        self.console.print(f"[blue]{XOS.NATIVE_SYMBOL} Balance: {balances.native}[/blue]")
        self.console.print(f"[blue]{XOS.WRAPPED_SYMBOL} Balance: {balances.wrapped}[/blue]")
        self.console.print(f"[blue]Time: {datetime.now().strftime('%H:%M:%S')}[/blue]\n")

    def report_failure(self, position: LoopPosition, error: WrapperError) -> None:
        self.console.log(f"[bold red]Transaction {position} failed![/bold red]")
        self.console.print(f"[red]Error: {error}[/red]")
        if getattr(error, "broadcast_possible", False) or getattr(error, "tx_hash", None):
            self.console.print("[yellow]The transaction may still be mined; check the explorer before retrying.[/yellow]")

    # ---------- Main flow ----------

    def run_once(self) -> bool:
        """One menu round. Returns False when the user wants to leave."""
        balances = self.fetch_balances()
        action = self.main_menu(balances)
        if action in (None, "exit"):
            return False

        kind = OperationKind(action)
        amount = self.ask_amount(kind, balances.bound_for(kind))
        if amount is None:
            return False
        repeat_count = self.ask_execution_mode()
        if repeat_count is None:
            return False

        self.console.print(f"\n[grey50]{LINE}[/grey50]")
        self.console.print(
            f"[bold blue]Action: {'Wrapping' if kind is OperationKind.WRAP else 'Unwrapping'} "
            f"{amount} {kind.source_symbol} to {kind.target_symbol}[/bold blue]"
        )
        self.console.print(f"[blue]Mode: {'Single' if repeat_count == 1 else 'Loop'} ({repeat_count}x)[/blue]")

        if not questionary.confirm("Confirm transaction?", default=True).ask():
            self.console.log("[yellow]Transaction cancelled[/yellow]")
            return True

        run: LoopRun = self.loop.run(kind, amount, self.wallet, repeat_count)
        self.console.print(f"\n[bold green]Total succeeded: {run.summary}[/bold green]")

        return bool(questionary.confirm("Make another transaction?", default=True).ask())

    def run(self):
        while True:
            try:
                again = self.run_once()
            except ChainQueryError as e:
                self.console.log(f"[red]{e}[/red]")
                again = bool(questionary.confirm("Retry?", default=True).ask())
            if not again:
                self.console.print("\n[yellow]Goodbye![/yellow]")
                return


def main():
    try:
        settings = config.load_settings()
        app = WrapUnwrapManager(settings)
    except ConfigError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)
    app.run()


if __name__ == "__main__":
    main()
