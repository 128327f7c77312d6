"""Shared console output for warnings and CLI rendering."""

from rich.console import Console

# Library warnings go to stderr so they never mix with CLI output
console = Console(stderr=True, highlight=False)


def warn(message: str) -> None:
    """Print a non-fatal warning."""
    console.print(f"⚠️  {message}", markup=False)
