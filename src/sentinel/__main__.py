"""Entry point: python -m sentinel"""

import asyncio

from sentinel.main import run


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
