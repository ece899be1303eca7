# main_runner.py
import os
import importlib.util
import questionary
from rich.console import Console
from config import MODULE_PATH

console = Console()


def load_and_run_module(module_path):
    """
    Load a module from the given path and run its main function.
    """
    module_name = os.path.basename(module_path).replace('.py', '')

    spec = importlib.util.spec_from_file_location(module_name, module_path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    if hasattr(module, 'main'):
        module.main()
    else:
        console.print(f"[yellow]No main() function found in {module_name}. Skipping...[/yellow]")


def list_task_files(module_path=MODULE_PATH):
    if not os.path.isdir(module_path):
        return []
    return sorted(f for f in os.listdir(module_path) if f.endswith('.py') and not f.startswith('_'))


def run_selected_module():
    """
    Allow the user to select which task to run from the modules directory.
    """
    if not os.path.isdir(MODULE_PATH):
        console.print(f"[red]The path '{MODULE_PATH}' is not a valid directory.[/red]")
        return

    python_files = list_task_files()
    if not python_files:
        console.print("[red]No Python modules found in the specified directory.[/red]")
        return

    # Show titles without the .py extension, but keep full filename as value
    choices = [
        questionary.Choice(
            title=f"{idx + 1}. {os.path.splitext(fname)[0]}",
            value=fname
        )
        for idx, fname in enumerate(python_files)
    ]

    selected_file = questionary.select(
        "Select the task you want to run:",
        choices=choices
    ).ask()

    if selected_file:
        module_path = os.path.join(MODULE_PATH, selected_file)
        try:
            load_and_run_module(module_path)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted.[/yellow]")
        except Exception as e:
            console.print(f"[red]Error running {module_path}: {e}[/red]")
            raise SystemExit(1)
    else:
        console.print("No module selected.")


if __name__ == "__main__":
    run_selected_module()
