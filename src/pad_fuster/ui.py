from typing import Optional, Tuple

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn

from pad_fuster.state_snapshot import ByteSnapshot

COLORS = {
    "current_byte": "bold yellow on black",
    "unsolved": "cyan",
    "solved": "turquoise2",
}


def intermediate_to_string(intermediate: Tuple[Optional[int], ...], current_byte_index: int = -1) -> str:
    """Render a partial intermediate value as colored hex, ?? for unknown bytes."""
    hex_bytes = []
    for i, b in enumerate(intermediate):
        value = "??" if b is None else f"{b:02x}"
        if i == current_byte_index:
            style = COLORS["current_byte"]
        elif b is None:
            style = COLORS["unsolved"]
        else:
            style = COLORS["solved"]
        hex_bytes.append(f"[{style}]{value}[/{style}]")
    return " ".join(hex_bytes)


class CrackProgress:
    """Live progress bar over every byte the attack has to recover.

    Pass `on_byte` to the Cracker as its snapshot callback.
    """

    def __init__(self, total_bytes: int, *, console: Optional[Console] = None, enabled: bool = True):
        self.total_bytes = total_bytes
        self.requests = 0
        self.blocks = 0
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(bar_width=30),
            TextColumn("{task.completed}/{task.total}"),
            TextColumn("{task.fields[blocks]} blocks"),
            TextColumn("{task.fields[requests]} requests"),
            expand=True,
            transient=True,
            console=console or Console(stderr=True),
            disable=not enabled,
        )
        self.task: Optional[TaskID] = None

    def __enter__(self) -> "CrackProgress":
        self.progress.start()
        self.task = self.progress.add_task("Cracking", total=self.total_bytes, blocks=0, requests=0)
        return self

    def __exit__(self, *exc_info) -> None:
        self.progress.stop()

    def on_byte(self, snapshot: ByteSnapshot) -> None:
        self.requests += snapshot.requests
        if snapshot.complete:
            self.blocks += 1
        self.progress.update(
            self.task,
            advance=1,
            description=intermediate_to_string(snapshot.intermediate, snapshot.byte_index_i),
            blocks=self.blocks,
            requests=self.requests,
        )
