"""
Quest Pins — Entry Point

Thin wrapper that delegates to bot/client.py.

Named main.py rather than bot.py: Python puts the script's directory on
sys.path[0], so an orchestration/bot.py would mask the top-level 'bot/' package.

To run: python orchestration/main.py
   or:  python -m bot.client
"""

from bot.client import run

if __name__ == "__main__":
    run()
