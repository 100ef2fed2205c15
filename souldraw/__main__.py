"""Entry point for running the bot as a module via python -m souldraw"""

import asyncio

from souldraw.runtime import main

if __name__ == "__main__":
    asyncio.run(main())
