from typing import Optional


class AppState:
    """Process-wide CLI flags, set once by the top-level callback."""

    def __init__(self):
        self.verbose_mode: bool = False
        self.search_path: Optional[str] = None


APP_STATE = AppState()
