from __future__ import annotations

from typing import List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from crm_double.domain.models import ObjectType, Record, SearchResult


def print_types(types: List[ObjectType], console: Optional[Console] = None) -> None:
    """
    Render the type registry as a rich table.

    Built-in types come first, then custom types in registration order.
    """
    console = console or Console()
    if not types:
        console.print("[yellow]No object types registered.[/yellow]")
        return

    table = Table(title="Object Types", box=box.ROUNDED)
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Name", style="magenta")
    table.add_column("Label", style="green")
    table.add_column("Primary Display", style="yellow")
    table.add_column("Custom", justify="center")

    for object_type in types:
        table.add_row(
            object_type.id,
            object_type.name,
            object_type.label_plural,
            object_type.primary_display_property or "-",
            "yes" if object_type.is_custom else "",
        )
    console.print(table)


def _columns(records: Sequence[Record]) -> List[str]:
    # hs_object_id duplicates the Id column.
    names: List[str] = []
    for record in records:
        for name in record.properties:
            if name not in names and name != "hs_object_id":
                names.append(name)
    return names


def print_search(result: SearchResult, console: Optional[Console] = None) -> None:
    """
    Render one page of search results with a caption showing the total
    and the cursor of the next page.
    """
    console = console or Console()
    if not result.results:
        console.print(f"[yellow]No matching records (total {result.total}).[/yellow]")
        return

    caption = f"{len(result.results)} of {result.total}"
    if result.next_after is not None:
        caption += f" │ next after: {result.next_after}"
    table = Table(title="Search Results", box=box.ROUNDED, caption=caption)
    table.add_column("Id", style="cyan", no_wrap=True, justify="right")
    columns = _columns(result.results)
    for name in columns:
        table.add_column(name)

    for record in result.results:
        table.add_row(record.id, *[record.properties.get(name) or "" for name in columns])
    console.print(table)


__all__ = ["print_search", "print_types"]
