#!/usr/bin/env python3
"""Main entry point for running the whale-aware grid trading bot"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


async def main():
    from whale_grid.core.core_config import load_config
    from whale_grid.main import GridTradingBot
    from whale_grid.utils.utils_logging import setup_logging

    config = load_config()
    setup_logging(config.log_level, config.log_file)

    bot = GridTradingBot(config)
    try:
        await bot.initialize()
        await bot.run()
    except (KeyboardInterrupt, asyncio.CancelledError):
        print("👋 Bot stopped by user")
    except Exception as e:
        print(f"💥 Error: {e}")
        raise
    finally:
        await bot.cleanup()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
