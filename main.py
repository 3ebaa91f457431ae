"""
StudyBuddies Lesson Engine — Entry Point.

Single entry point: `python main.py` starts the Telegram bot and the
lesson subscription behind it.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from studybuddies.bot.telegram_bot import main

if __name__ == "__main__":
    main()
