from __future__ import annotations
from typing import Optional, TYPE_CHECKING
import shutil

if TYPE_CHECKING:
    from sym_dp.solver import ValueIteration, IterationStats


PRINT_WIDTH, PRINT_HEIGHT = shutil.get_terminal_size((80, 20))

HEADERS = ("nodes", "branches", "cases", "time (ms)")


def stats_repr(stats: IterationStats, max_branch_count: float) -> tuple[str, ...]:
    branches = f"> {max_branch_count:g}" if stats.overflow else str(stats.branches)
    return (str(stats.nodes), branches, f"{stats.cases:g}", f"{stats.elapsed_ms:.0f}")


def create_table(solver: ValueIteration, width: Optional[int] = None, height: Optional[int] = None) -> list[str]:
        # Prepare ...
        if width is None:
            width = PRINT_WIDTH

        if height is None:
            height = PRINT_HEIGHT

        if height <= 8:
            raise ValueError("Height too small")

        stats = solver.stats
        max_branch_count = solver.config.max_branch_count
        horizons = len(stats)

        index_width = max(len(str(horizons)) + 2, 4)  # Need to be able to fit "iter"
        index_column_width = index_width + 2
        content_column_width = (width - index_column_width - len(HEADERS)) // len(HEADERS)
        content_width = content_column_width - 2

        #  Create repr lines ...
        repr_lines = []
        repr_lines.append(f"{solver.__class__.__name__}(")
        repr_lines.append(header_row := create_row("iter", *HEADERS, index_width=index_width, content_width=content_width))
        repr_lines.append("=" * len(header_row))

        horizon = 0
        upper_slice = stats[:max(min(height - 8, horizons), 0)]
        for horizon, entry in enumerate(upper_slice, 1):
            row = create_row(f"{horizon} ", *stats_repr(entry, max_branch_count),
                             index_width=index_width, content_width=content_width)
            repr_lines.append(row)

        if (skip := (horizons - (horizon + 3))) > 0:  # Count rows to be skipped (skip row and three end rows can stay)
            skip_row = create_row('... ', *(['...'] * len(HEADERS)), index_width=index_width, content_width=content_width)
            repr_lines.append(skip_row)
            horizon = horizon + skip  # Move horizon forward by the number of skipped rows

        lower_slice = stats[horizon:]
        for horizon, entry in enumerate(lower_slice, horizon + 1):
            row = create_row(f"{horizon} ", *stats_repr(entry, max_branch_count),
                             index_width=index_width, content_width=content_width)
            repr_lines.append(row)

        repr_lines.append(")")

        return repr_lines


def create_row(index: str, *content: str, index_width: int, content_width: int) -> str:

    row = " " + " | ".join([
        f"{index : >{index_width}}",
        *[f"{shorten_content(content, content_width) : ^{content_width}}" for content in content]
    ])

    return row


def shorten_content(content: str, width: int, placeholder: str = "...") -> str:
    if width < len(placeholder) + 1:
        raise ValueError("Width too small")

    content_lines = content.split("\n")
    if len(content_lines) == 1:
        fini_width = 1
        ini_width = max(width - fini_width - len(placeholder), 0)

        if len(content_lines[0]) > width:
            return content_lines[0][:ini_width] + placeholder + content_lines[0][-fini_width:]
        else:
            return content_lines[0]

    else:
        ini_width = max(width - len(placeholder), 1)

        if len(content_lines[0]) + len(placeholder) > width:
            return content_lines[0][:ini_width] + placeholder
        else: # Just return the full line but append placeholder with enough spacing to fill up the whole width:
            return content_lines[0] + f"{placeholder : >{width - len(content_lines[0])}}"
