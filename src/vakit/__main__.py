from __future__ import annotations

from .tui.app import VakitApp


def main() -> None:
    VakitApp().run()


if __name__ == "__main__":  # pragma: no cover
    main()
