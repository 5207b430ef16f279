"""File-backed watchlist source."""

import asyncio
import pathlib

from turtledesk.config import load_watchlist


class WatchlistFile:
    """``WatchlistSource`` reading a JSON file on every run.

    The file is re-read each time so edits take effect on the next run
    without a restart.
    """

    def __init__(self, path: str | pathlib.Path) -> None:
        self._path = pathlib.Path(path)

    async def get_instruments(self) -> list[str]:
        return await asyncio.to_thread(load_watchlist, self._path)
