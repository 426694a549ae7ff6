#!/usr/bin/env python3
"""
Simple launcher script for the arbitrage bot.
"""
import asyncio
import sys

from jupiter_arb.main import main

if __name__ == '__main__':
    try:
        asyncio.run(main(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
