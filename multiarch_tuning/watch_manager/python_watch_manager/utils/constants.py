"""Useful Constants"""

## Timer Constants

# Minimum wait time between checks in the timer thread
MIN_SLEEP_TIME = 1
